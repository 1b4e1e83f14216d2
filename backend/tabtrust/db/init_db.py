"""
Database initialization script.
"""
from tabtrust.db.session import init_db

# Import all models so SQLAlchemy can register them
from tabtrust.models import (  # noqa: F401
    User, Friendship, Tab, TabParticipant, SettlementHistory, OTPCode
)

if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Database initialized successfully!")
