from trello2planner.cli import main

main()
