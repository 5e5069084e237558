from renderproxy.main import main

main()
