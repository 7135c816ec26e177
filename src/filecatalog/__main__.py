from .cli import entrypoint

if __name__ == "__main__":  # pragma: no cover
    entrypoint()
