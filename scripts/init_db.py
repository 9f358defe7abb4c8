import os
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.append(str(Path(__file__).resolve().parents[1]))

from clinic_availability.database import make_engine  # noqa: E402
from clinic_availability.models.generated import Base  # noqa: E402


# ======================================================
# ENV
# ======================================================

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set")


# ======================================================
# MAIN
# ======================================================

def main():
    print(f"Using DB: {DATABASE_URL}")
    engine = make_engine(DATABASE_URL)
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()

    for table in Base.metadata.sorted_tables:
        print(f"✔ {table.name}")
    print("Schema ready.")


if __name__ == "__main__":
    main()
