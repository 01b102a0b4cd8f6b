from sqlalchemy import Column, String, Text, Integer, ForeignKey, BigInteger, TIMESTAMP, text
from sqlalchemy.orm import declarative_base
from pgvector.sqlalchemy import Vector

from .config import get_settings

# Must match the embedding model; changing it means rebuilding every vector
EMBED_DIM = get_settings().embed_dim

Base = declarative_base()


class Bucket(Base):
    __tablename__ = "buckets"
    id = Column(String(191), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    color = Column(String(7), server_default=text("'#344736'"))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()"))


class Resource(Base):
    __tablename__ = "resources"
    id = Column(String(191), primary_key=True)
    bucket_id = Column(String(191), ForeignKey("buckets.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(100), nullable=False)
    file_size = Column(BigInteger)
    content = Column(Text, nullable=False)
    chunk_index = Column(Integer, nullable=False, server_default=text("0"))
    total_chunks = Column(Integer, nullable=False, server_default=text("1"))
    description = Column(Text)
    uploaded_by = Column(String(255))
    brand = Column(String(255))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()"))


class Embedding(Base):
    __tablename__ = "embeddings"
    id = Column(String(191), primary_key=True)
    resource_id = Column(String(191), ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    embedding = Column(Vector(EMBED_DIM), nullable=False)
