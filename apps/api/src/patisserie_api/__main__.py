import uvicorn

from .app import create_app


def main() -> None:
    uvicorn.run(create_app, factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
