from personal_historian.main import run_main

run_main()
