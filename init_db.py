from app.backend.src.core.config import get_settings
from app.backend.src.db import create_tables


def init_db():
    print(f"Connecting to {get_settings().database_url}")
    create_tables()
    print("Tables created successfully!")


if __name__ == "__main__":
    init_db()
