from price_extraction.main import main

main()
