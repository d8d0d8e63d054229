from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime

Base = declarative_base()

DEFAULT_DB_URL = 'sqlite:///license_records.db'

class LicenseSetting(Base):
    __tablename__ = 'license_settings'

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<LicenseSetting(key='{self.key}')>"

def create_session_factory(db_url=DEFAULT_DB_URL, echo=False):
    """Create the engine for `db_url`, make sure the tables exist and return a session factory."""
    # Verification runs on worker threads
    connect_args = {'check_same_thread': False} if db_url.startswith('sqlite') else {}
    engine = create_engine(db_url, echo=echo, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
