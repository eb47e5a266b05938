from rowkit.main import main

main()
