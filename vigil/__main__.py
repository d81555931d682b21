from vigil.main import main

main()
