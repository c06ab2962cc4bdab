from xmrpay.main import main

main()
