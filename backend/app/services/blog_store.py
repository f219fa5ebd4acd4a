import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import List, Optional

from app.config import get_settings
from app.models import BlogPost, BlogPostCreate, BlogPostUpdate

BLOG_TABLES = ("blog_posts",)


class BlogStoreError(ValueError):
    pass


class BlogStoreValidationError(BlogStoreError):
    pass


class BlogStoreNotFoundError(BlogStoreError):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class BlogStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS blog_posts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        content TEXT NOT NULL,
                        author TEXT,
                        image_url TEXT,
                        is_published INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.commit()

    def _row_to_post(self, row: sqlite3.Row) -> BlogPost:
        return BlogPost(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            author=row["author"],
            image_url=row["image_url"],
            is_published=bool(row["is_published"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def list_posts(self, published_only: bool = True) -> List[BlogPost]:
        query = "SELECT * FROM blog_posts"
        if published_only:
            query += " WHERE is_published = 1"
        query += " ORDER BY created_at DESC, id DESC"
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query).fetchall()
        return [self._row_to_post(row) for row in rows]

    def get_post(self, post_id: int, published_only: bool = True) -> Optional[BlogPost]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM blog_posts WHERE id = ?", (post_id,)).fetchone()
        if not row:
            return None
        post = self._row_to_post(row)
        if published_only and not post.is_published:
            return None
        return post

    def create_post(self, payload: BlogPostCreate) -> BlogPost:
        title = payload.title.strip()
        content = payload.content.strip()
        if not title or not content:
            raise BlogStoreValidationError("Title and content are required")
        now = _now()
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO blog_posts (title, content, author, image_url, is_published, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        title,
                        content,
                        (payload.author or "").strip() or None,
                        payload.image_url or None,
                        1 if payload.is_published else 0,
                        now,
                        now,
                    ),
                )
                conn.commit()
                post_id = int(cursor.lastrowid)
        created = self.get_post(post_id, published_only=False)
        assert created is not None
        return created

    def update_post(self, post_id: int, payload: BlogPostUpdate) -> BlogPost:
        current = self.get_post(post_id, published_only=False)
        if not current:
            raise BlogStoreNotFoundError("Blog post not found")
        changes = payload.model_dump(exclude_unset=True)
        merged = current.model_copy(update=changes)
        if not merged.title.strip() or not merged.content.strip():
            raise BlogStoreValidationError("Title and content are required")
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE blog_posts
                    SET title = ?, content = ?, author = ?, image_url = ?, is_published = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        merged.title.strip(),
                        merged.content.strip(),
                        merged.author,
                        merged.image_url,
                        1 if merged.is_published else 0,
                        _now(),
                        post_id,
                    ),
                )
                conn.commit()
        updated = self.get_post(post_id, published_only=False)
        assert updated is not None
        return updated

    def delete_post(self, post_id: int) -> None:
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM blog_posts WHERE id = ?", (post_id,))
                conn.commit()
        if cursor.rowcount == 0:
            raise BlogStoreNotFoundError("Blog post not found")


blog_store = BlogStore(db_path=get_settings().database_path)


def get_blog_store() -> BlogStore:
    return blog_store
