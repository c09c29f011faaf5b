from random_image_server.main import main

if __name__ == "__main__":
    main()
