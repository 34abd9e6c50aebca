from owaspscanner.cli import main

main()
