from pixload.cli import main

main()
