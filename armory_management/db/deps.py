from collections.abc import Generator

from .session import SessionLocalArmory


def get_armory_db() -> Generator:
    db = SessionLocalArmory()
    try:
        yield db
    finally:
        db.close()
