import uvicorn

from cashback_api.core.settings import settings


def main() -> None:
    uvicorn.run(
        "cashback_api.app:create_app",
        factory=True,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
