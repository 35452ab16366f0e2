"""Microsoft Graph client for Planner, group conversations and drives."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import IO, Any, cast

import requests
from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError

from trello2planner.config import DEFAULT_GRAPH_SCOPES
from trello2planner.exceptions import (
    GraphAPIError,
    GraphAuthenticationError,
    GraphNotFoundError,
    GraphPreconditionFailedError,
    GraphRateLimitError,
    GraphServerError,
)
from trello2planner.fanout import fan_out
from trello2planner.models import GroupPlan
from trello2planner.planner_payloads import (
    NewBucket,
    NewTask,
    NewThread,
    TaskDetails,
    ThreadReply,
)
from trello2planner.rate_limiter import RateLimiter
from trello2planner.retry import send_with_retry

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "trello2planner"


class GraphErrors:
    """Typed exceptions for a failed ``method url`` request"""

    def __init__(self, method: str, url: str):
        self.method = method
        self.url = url

    def status_error(self, status_code: int, response_text: str) -> GraphAPIError:
        if status_code in (401, 403):
            return GraphAuthenticationError(
                f"Access denied for {self.method} {self.url}\n"
                "Check the signed-in account and the app's Graph permissions.",
                status_code=status_code,
                response_text=response_text,
            )
        if status_code == 404:
            return GraphNotFoundError(
                f"Resource not found: {self.url}",
                status_code=status_code,
                response_text=response_text,
            )
        if status_code in (409, 412):
            return GraphPreconditionFailedError(
                f"Concurrency token mismatch for {self.method} {self.url}",
                status_code=status_code,
                response_text=response_text,
            )
        return GraphAPIError(
            f"HTTP {status_code} error for {self.method} {self.url}: {response_text[:200]}",
            status_code=status_code,
            response_text=response_text,
        )

    def exhausted_error(
        self, status_code: int, response_text: str, attempts: int
    ) -> GraphAPIError:
        if status_code == 429:
            return GraphRateLimitError(
                f"Graph throttled {self.method} {self.url} after {attempts} attempts.",
                status_code=status_code,
                response_text=response_text,
            )
        return GraphServerError(
            f"Graph server error (HTTP {status_code}) persisted after {attempts} attempts.",
            status_code=status_code,
            response_text=response_text,
        )

    def network_error(self, error: requests.RequestException, attempts: int) -> GraphAPIError:
        return GraphAPIError(
            f"Network error after {attempts} attempts: {error}\n"
            "Check your internet connection and try again."
        )


class PlannerClient:
    """Write tasks, buckets, thread replies and files to Microsoft Graph

    Graph throttles per app and per tenant with limits that are not published
    per endpoint; 9 req/sec keeps a single operator session well clear of them.

    Access tokens come from an ``azure.identity`` credential (device code sign-in
    in the CLI); the credential caches and refreshes them.

    Like ``TrelloReader``, public operations log the server's error body and
    return None/False instead of raising, so one failed card never aborts a
    whole migration.
    """

    TASK_CREATE_RETRIES = 10
    TASK_CREATE_RETRY_DELAY = 1.0
    REPLY_NOT_FOUND_DELAY = 2.0

    def __init__(
        self,
        credential: TokenCredential,
        scopes: list[str] | None = None,
        rate_limiter: RateLimiter | None = None,
        max_workers: int = 16,
        verify_ssl: bool = True,
    ):
        self.credential = credential
        self.scopes = list(scopes or DEFAULT_GRAPH_SCOPES.split())
        self.base_url = "https://graph.microsoft.com/v1.0"
        self.max_workers = max_workers
        self.verify_ssl = verify_ssl
        self.rate_limiter = rate_limiter or RateLimiter(requests_per_second=9)

        self.plans: list[GroupPlan] = []
        self.plans_loaded = False
        self._plan_groups: dict[str, str] = {}
        self._plan_groups_lock = threading.Lock()

    def get_access_token(self) -> str:
        """Return a bearer token for the configured scopes.

        Raises:
            GraphAuthenticationError: If sign-in fails or is abandoned
        """
        try:
            return self.credential.get_token(*self.scopes).token
        except ClientAuthenticationError as e:
            raise GraphAuthenticationError(f"Microsoft sign-in failed: {e.message}") from e

    def _request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        data: bytes | None = None,
        headers: dict | None = None,
        retries: int = 3,
    ) -> requests.Response:
        """Authenticated, rate-limited request with retry logic for transient failures

        Args:
            method: HTTP method
            endpoint: Path relative to the Graph base URL, or an absolute URL
                      (as returned in ``@odata.nextLink``)
            retries: Total attempts for transient failures

        Raises:
            GraphAuthenticationError: 401/403, or no token could be obtained
            GraphNotFoundError: 404
            GraphPreconditionFailedError: 409/412 (stale If-Match token)
            GraphRateLimitError: 429 persisted after all attempts
            GraphServerError: 5xx persisted after all attempts
            GraphAPIError: Any other failure
        """
        url = endpoint if endpoint.startswith("https://") else f"{self.base_url}/{endpoint}"

        def send() -> requests.Response:
            request_headers = {"Authorization": f"Bearer {self.get_access_token()}"}
            if headers:
                request_headers.update(headers)
            return requests.request(
                method,
                url,
                json=json,
                data=data,
                headers=request_headers,
                timeout=60,
                verify=self.verify_ssl,
            )

        return send_with_retry(send, self.rate_limiter, GraphErrors(method, url), retries)

    def _get_json(self, endpoint: str) -> dict:
        """GET a JSON object.

        Raises:
            GraphAPIError: Also when a successful response carries no JSON
                           object (e.g. a gateway's HTML error page)
        """
        response = self._request("GET", endpoint)
        try:
            body = response.json()
        except ValueError as e:
            raise GraphAPIError(
                f"Response from {endpoint} is not valid JSON: {e}",
                status_code=response.status_code,
                response_text=response.text,
            ) from e
        if not isinstance(body, dict):
            raise GraphAPIError(
                f"Response from {endpoint} is not a JSON object",
                status_code=response.status_code,
                response_text=response.text,
            )
        return body

    def _paginated_get(self, endpoint: str) -> list[dict]:
        """Follow ``@odata.nextLink`` until the collection is exhausted"""
        items: list[dict] = []
        next_url: str | None = endpoint
        while next_url:
            page = self._get_json(next_url)
            items.extend(page.get("value", []))
            next_url = page.get("@odata.nextLink")
        return items

    @staticmethod
    def _log_api_error(action: str, error: GraphAPIError) -> None:
        logger.error("Error %s: %s", action, error)
        if error.response_text:
            logger.error("Server said: %s", error.response_text)

    # Plan catalog

    def _group_plans(self, group: dict) -> list[GroupPlan] | None:
        try:
            raw_plans = self._paginated_get(f"groups/{group['id']}/planner/plans")
        except GraphAPIError as e:
            self._log_api_error(f"listing plans of group {group['id']}", e)
            return None
        try:
            return [
                GroupPlan(
                    group_id=group["id"],
                    group_name=group.get("displayName") or "",
                    plan_id=plan["id"],
                    plan_name=plan.get("title") or "",
                )
                for plan in raw_plans
            ]
        except (KeyError, TypeError, AttributeError) as e:
            logger.error("Unable to parse plans of group %s: %s", group["id"], e)
            return None

    def _with_drive(self, plan: GroupPlan) -> GroupPlan | None:
        try:
            drive = self._get_json(f"groups/{plan.group_id}/drive")
        except GraphAPIError as e:
            self._log_api_error(f"retrieving drive of group {plan.group_id}", e)
            return None
        if not drive.get("id"):
            logger.error("Group %s (%s) has no drive", plan.group_id, plan.group_name)
            return None
        return GroupPlan(
            plan.group_id,
            plan.group_name,
            plan.plan_id,
            plan.plan_name,
            drive_id=drive["id"],
            drive_name=drive.get("name") or "",
        )

    def _list_groups(self) -> list[dict] | None:
        try:
            return self._paginated_get("groups?$select=id,displayName")
        except GraphAPIError as e:
            self._log_api_error("listing groups", e)
            return None

    def enumerate_plans(self) -> list[GroupPlan]:
        """Discover every plan the user can reach, together with its group's drive.

        Groups are listed first; plan and drive lookups are fanned out one
        request per group. Groups without plans are dropped, and plans whose
        group has no drive are logged and rejected since attachments could
        not be uploaded for them.

        Returns:
            The plan catalog (also kept as ``self.plans``)
        """
        groups = self._list_groups()
        if groups is None:
            return []

        logger.info(f"👥 Found {len(groups)} groups, listing plans...")
        plan_lists = fan_out(self._group_plans, groups, self.max_workers)
        candidates = [plan for plans in plan_lists if plans for plan in plans]

        resolved = fan_out(self._with_drive, candidates, self.max_workers)
        self.plans = [plan for plan in resolved if plan is not None]
        self.plans_loaded = True

        for plan in self.plans:
            with self._plan_groups_lock:
                self._plan_groups[plan.plan_id] = plan.group_id

        logger.info(f"🗂️  Discovered {len(self.plans)} plans")
        if len(self.plans) < len(candidates):
            logger.warning(f"⚠️  {len(candidates) - len(self.plans)} plans rejected (no drive)")
        return self.plans

    def find_plan(self, plan_id: str) -> GroupPlan | None:
        for plan in self.plans:
            if plan.plan_id == plan_id:
                return plan
        return None

    # Files and buckets

    def upload_file(self, plan_id: str, filename: str, stream: IO[bytes]) -> str | None:
        """Upload a file to the drive of the plan's group.

        Every upload goes to its own ``trello2planner/<uuid>/`` folder, so
        identical filenames from different cards never overwrite each other.

        Returns:
            The uploaded file's ``webUrl``, or None on failure
        """
        plan = self.find_plan(plan_id)
        if plan is None:
            logger.error("Plan %s is not in the discovered plan catalog", plan_id)
            return None

        stream.seek(0)
        content = stream.read()
        endpoint = (
            f"drives/{plan.drive_id}/root:/{UPLOAD_FOLDER}/{uuid.uuid4()}/{filename}:/content"
        )
        try:
            response = self._request(
                "PUT",
                endpoint,
                data=content,
                headers={"Content-Type": "application/octet-stream"},
            )
        except GraphAPIError as e:
            self._log_api_error(f"uploading {filename}", e)
            return None

        try:
            return cast(str, response.json()["webUrl"])
        except (ValueError, KeyError, TypeError):
            logger.error("Upload of %s returned no webUrl: %s", filename, response.text)
            return None

    def create_bucket(self, plan_id: str, name: str) -> str | None:
        try:
            created = self._request(
                "POST", "planner/buckets", json=NewBucket(plan_id, name).to_json()
            ).json()
            return cast(str, created["id"])
        except GraphAPIError as e:
            self._log_api_error(f"creating bucket {name}", e)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Unexpected response creating bucket %s: %s", name, e)
        return None

    # Tasks

    def resolve_plan_group(self, plan_id: str) -> str | None:
        """Return the id of the group that owns a plan (cached per plan)"""
        with self._plan_groups_lock:
            if plan_id in self._plan_groups:
                return self._plan_groups[plan_id]

        try:
            plan = self._get_json(f"planner/plans/{plan_id}")
        except GraphAPIError as e:
            self._log_api_error(f"resolving group of plan {plan_id}", e)
            return None

        container = plan.get("container")
        group_id = container.get("containerId") if isinstance(container, dict) else None
        group_id = group_id or plan.get("owner")
        if not group_id:
            logger.error("Plan %s has no owning group: %s", plan_id, plan)
            return None

        with self._plan_groups_lock:
            self._plan_groups[plan_id] = group_id
        return cast(str, group_id)

    def create_thread(self, group_id: str, topic: str) -> str | None:
        try:
            created = self._request(
                "POST", f"groups/{group_id}/threads", json=NewThread(topic).to_json()
            ).json()
            return cast(str, created["id"])
        except GraphAPIError as e:
            self._log_api_error(f"creating conversation thread in group {group_id}", e)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Unexpected response creating thread in group %s: %s", group_id, e)
        return None

    def _post_task(self, task: NewTask) -> dict | None:
        body = task.to_json()
        attempts = 1 + self.TASK_CREATE_RETRIES
        for attempt in range(1, attempts + 1):
            try:
                response = self._request("POST", "planner/tasks", json=body, retries=1)
                created = response.json()
                if isinstance(created, dict) and created.get("id"):
                    return created
                logger.warning("Task create returned no id (attempt %d/%d)", attempt, attempts)
            except GraphAPIError as e:
                logger.warning(
                    "Task create failed (attempt %d/%d): %s", attempt, attempts, e
                )
                if e.response_text:
                    logger.warning("Server said: %s", e.response_text)
            except ValueError as e:
                logger.warning(
                    "Task create returned invalid JSON (attempt %d/%d): %s", attempt, attempts, e
                )

            if attempt < attempts:
                time.sleep(self.TASK_CREATE_RETRY_DELAY)

        logger.error("Giving up creating task %s after %d attempts", task.title, attempts)
        return None

    def _patch_details(self, task_id: str, details: TaskDetails) -> bool:
        try:
            current = self._get_json(f"planner/tasks/{task_id}/details")
            self._request(
                "PATCH",
                f"planner/tasks/{task_id}/details",
                json=details.to_json(),
                headers={"If-Match": current.get("@odata.etag", "")},
            )
            return True
        except GraphAPIError as e:
            self._log_api_error(f"updating details of task {task_id}", e)
            return False

    def create_task(
        self,
        plan_id: str,
        bucket_id: str,
        title: str,
        details: TaskDetails | None = None,
    ) -> tuple[str, str] | None:
        """Create a task with its own conversation thread, then fill in its details.

        Steps, each aborting the whole operation on failure:
            1. Resolve the plan's group (needed for the thread)
            2. Create a conversation thread in that group
            3. POST the task referencing the thread (retried)
            4. PATCH the details, if any; on failure the task is deleted again
               so no half-populated task is left behind

        Returns:
            Tuple of (task_id, thread_id), or None if the task was not created
        """
        group_id = self.resolve_plan_group(plan_id)
        if group_id is None:
            return None

        thread_id = self.create_thread(group_id, title)
        if thread_id is None:
            return None

        created = self._post_task(NewTask(plan_id, bucket_id, title, thread_id))
        if created is None:
            return None
        task_id = created["id"]

        if details is not None and not details.is_empty():
            if not self._patch_details(task_id, details):
                logger.error("Rolling back task %s (%s)", task_id, title)
                if not self.delete_task(task_id, created.get("@odata.etag", "")):
                    logger.error("Task %s could not be rolled back and is left orphaned", task_id)
                return None

        return task_id, thread_id

    def post_reply(self, group_id: str, thread_id: str, text: str) -> bool:
        """Post a reply to a group conversation thread.

        A freshly created thread can briefly return 404; that case is retried
        exactly once.
        """
        endpoint = f"groups/{group_id}/threads/{thread_id}/reply"
        body = ThreadReply(text).to_json()
        for attempt in range(2):
            try:
                self._request("POST", endpoint, json=body)
                return True
            except GraphNotFoundError as e:
                if attempt == 0:
                    logger.debug("Thread %s not found yet, retrying once", thread_id)
                    time.sleep(self.REPLY_NOT_FOUND_DELAY)
                    continue
                self._log_api_error(f"replying to thread {thread_id}", e)
            except GraphAPIError as e:
                self._log_api_error(f"replying to thread {thread_id}", e)
                break
        return False

    # Cleanup

    def _list_with_etags(self, endpoint: str, kind: str) -> list[tuple[str, str]] | None:
        try:
            items = self._paginated_get(endpoint)
        except GraphAPIError as e:
            self._log_api_error(f"listing {kind}", e)
            return None

        result = []
        for item in items:
            if not isinstance(item, dict) or not item.get("id"):
                logger.warning("Skipping malformed %s entry: %s", kind, item)
                continue
            etag = item.get("@odata.etag")
            if not etag:
                logger.warning("Skipping %s %s: no concurrency token", kind, item["id"])
                continue
            result.append((item["id"], etag))
        return result

    def list_task_ids(self, plan_id: str) -> list[tuple[str, str]] | None:
        """List (task_id, etag) pairs of a plan"""
        return self._list_with_etags(f"planner/plans/{plan_id}/tasks", "task")

    def list_bucket_ids(self, plan_id: str) -> list[tuple[str, str]] | None:
        """List (bucket_id, etag) pairs of a plan"""
        return self._list_with_etags(f"planner/plans/{plan_id}/buckets", "bucket")

    def _delete(self, endpoint: str, etag: str) -> bool:
        try:
            self._request("DELETE", endpoint, headers={"If-Match": etag})
            return True
        except GraphAPIError as e:
            self._log_api_error(f"deleting {endpoint}", e)
            return False

    def delete_task(self, task_id: str, etag: str) -> bool:
        return self._delete(f"planner/tasks/{task_id}", etag)

    def delete_bucket(self, bucket_id: str, etag: str) -> bool:
        return self._delete(f"planner/buckets/{bucket_id}", etag)

    # Debug helpers

    def get_me(self) -> dict | None:
        try:
            return self._get_json("me?$select=displayName,mail,userPrincipalName")
        except GraphAPIError as e:
            self._log_api_error("retrieving signed-in user", e)
            return None

    def list_group_plan_counts(self) -> list[tuple[str, str, int]] | None:
        """Return (group_id, group_name, plan_count) for every group"""
        groups = self._list_groups()
        if groups is None:
            return None
        plan_lists = fan_out(self._group_plans, groups, self.max_workers)
        return [
            (group["id"], group.get("displayName") or "", len(plans or []))
            for group, plans in zip(groups, plan_lists)
        ]

    def log_plans(self) -> None:
        if not self.plans_loaded:
            logger.warning("Plans not yet discovered")
            return
        logger.info(f"🗂️  {len(self.plans)} plans:")
        for i, plan in enumerate(self.plans):
            logger.info(f"   {i}. {plan}")

    def log_drives(self) -> None:
        if not self.plans_loaded:
            logger.warning("Plans not yet discovered")
            return
        for plan in self.plans:
            logger.info(f"   {plan.plan_name}: drive {plan.drive_name} ({plan.drive_id})")
