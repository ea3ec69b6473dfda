from readstate.cli import main

main()
