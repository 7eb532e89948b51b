from idea_refiner.main import serve

if __name__ == "__main__":
    serve()
