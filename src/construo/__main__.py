from construo.cli import main

main()
