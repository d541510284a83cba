from canstats.dashboard import main

main()
