import hashlib
import hmac
import json
import logging
import re
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.config import get_settings
from app.models import (
    Category,
    Plan,
    Provider,
    ProviderService,
    ProviderUpdateRequest,
    Registration,
    RatingBucket,
    RegistrationRequest,
    Review,
    ReviewRequest,
    ReviewSummary,
    ServiceInput,
    Subscription,
)

logger = logging.getLogger(__name__)

DIRECTORY_TABLES = (
    "categories",
    "providers",
    "provider_services",
    "provider_plans",
    "provider_registrations",
    "provider_subscriptions",
    "provider_reviews",
)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ANONYMOUS_REVIEWER = "Usuario Anónimo"


class DirectoryStoreError(ValueError):
    """Base class for user-visible directory errors."""


class DirectoryStoreValidationError(DirectoryStoreError):
    pass


class DirectoryStoreNotFoundError(DirectoryStoreError):
    pass


class DirectoryStoreConflictError(DirectoryStoreError):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_access_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def review_summary(reviews: List[Review]) -> ReviewSummary:
    total = len(reviews)
    counts = {rating: 0 for rating in range(1, 6)}
    for review in reviews:
        counts[review.rating] = counts.get(review.rating, 0) + 1
    average = sum(review.rating for review in reviews) / total if total else 0.0
    return ReviewSummary(
        total=total,
        average_rating=round(average, 1),
        verified_count=sum(1 for review in reviews if review.is_verified),
        distribution=[
            RatingBucket(
                rating=rating,
                count=counts[rating],
                percentage=round(counts[rating] * 100 / total, 1) if total else 0.0,
            )
            for rating in (5, 4, 3, 2, 1)
        ],
    )


def billing_period_from_name(name: str) -> Optional[str]:
    lowered = (name or "").lower()
    if "mensual" in lowered:
        return "mensual"
    if "anual" in lowered:
        return "anual"
    return None


def plan_features(description: str) -> List[str]:
    return [line.strip() for line in (description or "").split(".") if line.strip()]


@dataclass
class DirectoryStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()
        self._seed_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS categories (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        slug TEXT NOT NULL UNIQUE,
                        icon TEXT NOT NULL DEFAULT '',
                        display_order INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS providers (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        description TEXT,
                        city TEXT,
                        category_id TEXT,
                        whatsapp TEXT,
                        phone TEXT,
                        email TEXT,
                        instagram TEXT,
                        facebook TEXT,
                        profile_image_url TEXT,
                        gallery_json TEXT NOT NULL DEFAULT '[]',
                        is_active INTEGER NOT NULL DEFAULT 1,
                        is_premium INTEGER NOT NULL DEFAULT 0,
                        featured INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_services (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        description TEXT,
                        price REAL NOT NULL DEFAULT 0 CHECK (price >= 0)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_plans (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        price REAL NOT NULL,
                        price_id TEXT,
                        description TEXT NOT NULL DEFAULT '',
                        display_order INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_registrations (
                        id TEXT PRIMARY KEY,
                        business_name TEXT NOT NULL,
                        contact_name TEXT NOT NULL,
                        email TEXT NOT NULL,
                        phone TEXT NOT NULL DEFAULT '',
                        whatsapp TEXT NOT NULL DEFAULT '',
                        city TEXT,
                        category_id TEXT,
                        description TEXT NOT NULL DEFAULT '',
                        services_json TEXT NOT NULL DEFAULT '[]',
                        instagram TEXT,
                        facebook TEXT,
                        website TEXT,
                        status TEXT NOT NULL DEFAULT 'pending',
                        admin_notes TEXT,
                        provider_id TEXT,
                        metadata_json TEXT NOT NULL DEFAULT '{}',
                        access_code_hash TEXT,
                        created_at TEXT NOT NULL,
                        reviewed_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_subscriptions (
                        id TEXT PRIMARY KEY,
                        registration_id TEXT,
                        email TEXT,
                        plan_id TEXT,
                        plan_name TEXT,
                        customer_id TEXT,
                        subscription_id TEXT NOT NULL UNIQUE,
                        price_id TEXT,
                        checkout_session_id TEXT,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_reviews (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT NOT NULL,
                        visitor_id TEXT NOT NULL,
                        user_name TEXT NOT NULL,
                        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                        comment TEXT NOT NULL,
                        is_verified INTEGER NOT NULL DEFAULT 0,
                        helpful_votes INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        UNIQUE (provider_id, visitor_id)
                    )
                    """
                )
                self._ensure_column(conn, "provider_registrations", "access_code_hash", "TEXT")
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_provider_services_provider ON provider_services (provider_id)"
                )
                conn.commit()

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
        if column not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def _seed_if_needed(self) -> None:
        seed_categories = [
            ("cat_video", "Video y Fotografía", "video-fotografia", "camera", 1),
            ("cat_musica", "Música y DJ", "musica-dj", "music", 2),
            ("cat_banquetes", "Banquetes y Catering", "banquetes", "utensils", 3),
            ("cat_decoracion", "Decoración", "decoracion", "sparkles", 4),
            ("cat_reposteria", "Repostería", "reposteria", "cake", 5),
        ]
        seed_plans = [
            (
                "basico_mensual",
                "Básico mensual",
                99.0,
                "price_1STciTIUfZRmRNv7PpiFZCGw",
                "Ficha con datos de contacto. Hasta 5 fotos promocionales. Aparición en el directorio por categoría.",
                1,
            ),
            (
                "destacado_mensual",
                "Destacado mensual",
                199.0,
                "price_1STckRIUfZRmRNv70fzEU8Wu",
                "Todo lo del Básico. Aparición en la franja superior de Destacados. Mayor probabilidad de ser contratado.",
                2,
            ),
            (
                "basico_anual",
                "Básico anual",
                1000.0,
                "price_1STcm9IUfZRmRNv7VyYecnoM",
                "Ficha con datos de contacto. Hasta 5 fotos promocionales. Aparición en el directorio por categoría.",
                3,
            ),
            (
                "destacado_anual",
                "Destacado anual",
                1990.0,
                "price_1STco7IUfZRmRNv7f99ARIH0",
                "Todo lo del Básico. Aparición en la franja superior de Destacados. Mayor probabilidad de ser contratado.",
                4,
            ),
        ]
        seed_providers = [
            {
                "id": "prov_snacks",
                "name": "Snacks Charlitron",
                "description": "Carrito de elotes y snacks para fiestas infantiles y bodas.",
                "city": "San Luis Potosí",
                "category_id": "cat_banquetes",
                "whatsapp": "524444237092",
                "is_premium": 1,
                "featured": 1,
                "services": [
                    ("Barra de elotes", "Elotes y esquites para 50 personas", 1800.0),
                    ("Mesa de snacks", "Papas, palomitas y dulces", 1200.0),
                ],
            },
            {
                "id": "prov_charlie",
                "name": "Charlie Production",
                "description": "Video y fotografía profesional para bodas y XV años.",
                "city": "San Luis Potosí",
                "category_id": "cat_video",
                "whatsapp": "524441234567",
                "is_premium": 1,
                "featured": 0,
                "services": [
                    ("Cobertura de boda", "Video cinematográfico con dron", 12000.0),
                ],
            },
            {
                "id": "prov_dj_norte",
                "name": "DJ Norte Sonido",
                "description": "DJ, iluminación y pista para eventos.",
                "city": "Monterrey",
                "category_id": "cat_musica",
                "whatsapp": "528112345678",
                "is_premium": 0,
                "featured": 0,
                "services": [
                    ("Paquete DJ 5 horas", "Sonido, luces y DJ", 4500.0),
                ],
            },
        ]

        with self._lock:
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO categories (id, name, slug, icon, display_order)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    seed_categories,
                )
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO provider_plans (id, name, price, price_id, description, display_order)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    seed_plans,
                )
                existing = conn.execute("SELECT COUNT(*) AS total FROM providers").fetchone()
                if int(existing["total"]) == 0:
                    now = _now()
                    for provider in seed_providers:
                        conn.execute(
                            """
                            INSERT INTO providers (
                                id, name, description, city, category_id, whatsapp,
                                is_active, is_premium, featured, created_at, updated_at
                            ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?)
                            """,
                            (
                                provider["id"],
                                provider["name"],
                                provider["description"],
                                provider["city"],
                                provider["category_id"],
                                provider["whatsapp"],
                                provider["is_premium"],
                                provider["featured"],
                                now,
                                now,
                            ),
                        )
                        for name, description, price in provider["services"]:
                            conn.execute(
                                "INSERT INTO provider_services (id, provider_id, name, description, price) VALUES (?, ?, ?, ?, ?)",
                                (f"srv_{uuid4().hex[:8]}", provider["id"], name, description, price),
                            )
                conn.commit()

    def _row_to_service(self, row: sqlite3.Row) -> ProviderService:
        return ProviderService(
            id=row["id"],
            provider_id=row["provider_id"],
            name=row["name"],
            description=row["description"],
            price=float(row["price"] or 0),
        )

    def _row_to_provider(self, row: sqlite3.Row, services: Optional[List[ProviderService]] = None) -> Provider:
        try:
            gallery = json.loads(row["gallery_json"] or "[]")
        except json.JSONDecodeError:
            gallery = []
        return Provider(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            city=row["city"],
            category_id=row["category_id"],
            whatsapp=row["whatsapp"],
            phone=row["phone"],
            email=row["email"],
            instagram=row["instagram"],
            facebook=row["facebook"],
            profile_image_url=row["profile_image_url"],
            gallery=gallery if isinstance(gallery, list) else [],
            is_active=bool(row["is_active"]),
            is_premium=bool(row["is_premium"]),
            featured=bool(row["featured"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            services=services if services is not None else [],
        )

    def _services_by_provider(self, conn: sqlite3.Connection, provider_ids: List[str]) -> Dict[str, List[ProviderService]]:
        grouped: Dict[str, List[ProviderService]] = {provider_id: [] for provider_id in provider_ids}
        if not provider_ids:
            return grouped
        placeholders = ",".join("?" for _ in provider_ids)
        rows = conn.execute(
            f"SELECT * FROM provider_services WHERE provider_id IN ({placeholders}) ORDER BY name",
            provider_ids,
        ).fetchall()
        for row in rows:
            grouped.setdefault(row["provider_id"], []).append(self._row_to_service(row))
        return grouped

    # Categories

    def list_categories(self) -> List[Category]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM categories ORDER BY display_order, name").fetchall()
        return [Category(**dict(row)) for row in rows]

    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM categories WHERE slug = ?", (slug,)).fetchone()
        return Category(**dict(row)) if row else None

    # Providers

    def list_providers(
        self,
        category_id: Optional[str] = None,
        include_inactive: bool = False,
        featured_only: bool = False,
    ) -> List[Provider]:
        clauses: List[str] = []
        params: List[Any] = []
        if not include_inactive:
            clauses.append("is_active = 1")
        if category_id:
            clauses.append("category_id = ?")
            params.append(category_id)
        if featured_only:
            clauses.append("featured = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM providers {where} ORDER BY featured DESC, name ASC",
                    params,
                ).fetchall()
                services = self._services_by_provider(conn, [row["id"] for row in rows])
        return [self._row_to_provider(row, services.get(row["id"], [])) for row in rows]

    def get_provider(self, provider_id: str, include_inactive: bool = False) -> Optional[Provider]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM providers WHERE id = ?", (provider_id,)).fetchone()
                if not row:
                    return None
                if not include_inactive and not row["is_active"]:
                    return None
                services = self._services_by_provider(conn, [provider_id])
        return self._row_to_provider(row, services.get(provider_id, []))

    def update_provider(self, provider_id: str, update: ProviderUpdateRequest) -> Provider:
        changes = update.model_dump(exclude_unset=True)
        if "name" in changes and not (changes["name"] or "").strip():
            raise DirectoryStoreValidationError("Provider name is required")
        allowed = {
            "name",
            "description",
            "city",
            "category_id",
            "whatsapp",
            "phone",
            "instagram",
            "facebook",
            "is_premium",
            "featured",
        }
        columns = [key for key in changes if key in allowed]
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT id FROM providers WHERE id = ?", (provider_id,)).fetchone()
                if not row:
                    raise DirectoryStoreNotFoundError("Provider not found")
                if columns:
                    assignments = ", ".join(f"{column} = ?" for column in columns)
                    values = [
                        (1 if changes[column] else 0) if column in {"is_premium", "featured"} else changes[column]
                        for column in columns
                    ]
                    conn.execute(
                        f"UPDATE providers SET {assignments}, updated_at = ? WHERE id = ?",
                        (*values, _now(), provider_id),
                    )
                    conn.commit()
        provider = self.get_provider(provider_id, include_inactive=True)
        assert provider is not None
        return provider

    def set_provider_active(self, provider_id: str, active: bool) -> Provider:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT is_active FROM providers WHERE id = ?", (provider_id,)).fetchone()
                if not row:
                    raise DirectoryStoreNotFoundError("Provider not found")
                if bool(row["is_active"]) == active:
                    state = "active" if active else "inactive"
                    raise DirectoryStoreConflictError(f"Provider is already {state}")
                conn.execute(
                    "UPDATE providers SET is_active = ?, updated_at = ? WHERE id = ?",
                    (1 if active else 0, _now(), provider_id),
                )
                conn.commit()
        logger.info("provider_active_changed provider_id=%s active=%s", provider_id, active)
        provider = self.get_provider(provider_id, include_inactive=True)
        assert provider is not None
        return provider

    # Plans

    def _row_to_plan(self, row: sqlite3.Row) -> Plan:
        return Plan(
            id=row["id"],
            name=row["name"],
            price=float(row["price"]),
            price_id=row["price_id"],
            description=row["description"] or "",
            billing_period=billing_period_from_name(row["name"]),
            features=plan_features(row["description"] or ""),
        )

    def list_plans(self) -> List[Plan]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM provider_plans ORDER BY display_order, name").fetchall()
        return [self._row_to_plan(row) for row in rows]

    def get_plan_by_price_id(self, price_id: str) -> Optional[Plan]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM provider_plans WHERE price_id = ?", (price_id,)).fetchone()
        return self._row_to_plan(row) if row else None

    # Registrations

    def _row_to_registration(self, row: sqlite3.Row) -> Registration:
        try:
            services = [ServiceInput(**item) for item in json.loads(row["services_json"] or "[]")]
        except (json.JSONDecodeError, TypeError, ValueError):
            services = []
        try:
            metadata = json.loads(row["metadata_json"] or "{}")
        except json.JSONDecodeError:
            metadata = {}
        return Registration(
            id=row["id"],
            business_name=row["business_name"],
            contact_name=row["contact_name"],
            email=row["email"],
            phone=row["phone"],
            whatsapp=row["whatsapp"],
            city=row["city"],
            category_id=row["category_id"],
            description=row["description"],
            services=services,
            instagram=row["instagram"],
            facebook=row["facebook"],
            website=row["website"],
            status=row["status"],
            admin_notes=row["admin_notes"],
            provider_id=row["provider_id"],
            metadata=metadata if isinstance(metadata, dict) else {},
            created_at=row["created_at"],
        )

    def email_registered(self, email: str) -> bool:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT id FROM provider_registrations WHERE email = ? LIMIT 1",
                    (email.strip().lower(),),
                ).fetchone()
        return row is not None

    def create_registration(self, request: RegistrationRequest) -> Registration:
        if not request.business_name.strip():
            raise DirectoryStoreValidationError("Business name is required")
        if not request.contact_name.strip():
            raise DirectoryStoreValidationError("Contact name is required")
        email = request.email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise DirectoryStoreValidationError("A valid email is required")
        if self.email_registered(email):
            raise DirectoryStoreConflictError("This email is already registered")

        registration_id = str(uuid4())
        access_code = secrets.token_urlsafe(9)
        services = [service.model_dump() for service in request.services if service.name.strip()]
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO provider_registrations (
                        id, business_name, contact_name, email, phone, whatsapp, city, category_id,
                        description, services_json, instagram, facebook, website, status,
                        metadata_json, access_code_hash, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
                    """,
                    (
                        registration_id,
                        request.business_name.strip(),
                        request.contact_name.strip(),
                        email,
                        request.phone.strip(),
                        request.whatsapp.strip(),
                        request.city,
                        request.category_id,
                        request.description.strip(),
                        json.dumps(services),
                        request.instagram,
                        request.facebook,
                        request.website,
                        json.dumps({"registered_at": _now()}),
                        _hash_access_code(access_code),
                        _now(),
                    ),
                )
                conn.commit()
        logger.info("registration_created id=%s", registration_id)
        registration = self.get_registration(registration_id)
        assert registration is not None
        return registration.model_copy(update={"access_code": access_code})

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM provider_registrations WHERE id = ?",
                    (registration_id,),
                ).fetchone()
        return self._row_to_registration(row) if row else None

    def list_registrations(self, status: Optional[str] = None) -> List[Registration]:
        with self._lock:
            with self._connect() as conn:
                if status:
                    rows = conn.execute(
                        "SELECT * FROM provider_registrations WHERE status = ? ORDER BY created_at DESC",
                        (status,),
                    ).fetchall()
                else:
                    rows = conn.execute(
                        "SELECT * FROM provider_registrations ORDER BY created_at DESC"
                    ).fetchall()
        return [self._row_to_registration(row) for row in rows]

    def approve_registration(self, registration_id: str, notes: Optional[str] = None) -> Registration:
        registration = self.get_registration(registration_id)
        if not registration:
            raise DirectoryStoreNotFoundError("Registration not found")
        if registration.status != "pending":
            raise DirectoryStoreConflictError(f"Registration is already {registration.status}")

        provider_id = f"prov_{uuid4().hex[:10]}"
        now = _now()
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO providers (
                        id, name, description, city, category_id, whatsapp, phone, email,
                        instagram, facebook, is_active, is_premium, featured, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 0, 0, ?, ?)
                    """,
                    (
                        provider_id,
                        registration.business_name,
                        registration.description or None,
                        registration.city,
                        registration.category_id,
                        registration.whatsapp or None,
                        registration.phone or None,
                        registration.email,
                        registration.instagram,
                        registration.facebook,
                        now,
                        now,
                    ),
                )
                conn.executemany(
                    "INSERT INTO provider_services (id, provider_id, name, description, price) VALUES (?, ?, ?, ?, ?)",
                    [
                        (f"srv_{uuid4().hex[:8]}", provider_id, service.name, service.description, service.price)
                        for service in registration.services
                    ],
                )
                conn.execute(
                    """
                    UPDATE provider_registrations
                    SET status = 'approved', provider_id = ?, admin_notes = COALESCE(?, admin_notes), reviewed_at = ?
                    WHERE id = ?
                    """,
                    (provider_id, notes, now, registration_id),
                )
                conn.commit()
        logger.info("registration_approved id=%s provider_id=%s", registration_id, provider_id)
        approved = self.get_registration(registration_id)
        assert approved is not None
        return approved

    def reject_registration(self, registration_id: str, notes: Optional[str] = None) -> Registration:
        registration = self.get_registration(registration_id)
        if not registration:
            raise DirectoryStoreNotFoundError("Registration not found")
        if registration.status != "pending":
            raise DirectoryStoreConflictError(f"Registration is already {registration.status}")
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE provider_registrations
                    SET status = 'rejected', admin_notes = COALESCE(?, admin_notes), reviewed_at = ?
                    WHERE id = ?
                    """,
                    (notes, _now(), registration_id),
                )
                conn.commit()
        rejected = self.get_registration(registration_id)
        assert rejected is not None
        return rejected

    def record_registration_payment(self, registration_id: str, payment: Dict[str, Any], note: str) -> bool:
        registration = self.get_registration(registration_id)
        if not registration:
            return False
        metadata = dict(registration.metadata)
        metadata.update(payment)
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE provider_registrations SET metadata_json = ?, admin_notes = ? WHERE id = ?",
                    (json.dumps(metadata), note, registration_id),
                )
                conn.commit()
        return True

    def authenticate_provider(self, registration_id: str, access_code: str) -> Registration:
        """Return the approved registration whose access code matches, for provider self-service."""
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM provider_registrations WHERE id = ?",
                    (registration_id,),
                ).fetchone()
        stored_hash = row["access_code_hash"] if row else None
        if not stored_hash or not hmac.compare_digest(stored_hash, _hash_access_code(access_code)):
            raise DirectoryStoreNotFoundError("Invalid registration id or access code")
        registration = self._row_to_registration(row)
        if registration.status != "approved" or not registration.provider_id:
            raise DirectoryStoreConflictError(f"Registration is {registration.status}, not approved")
        return registration

    # Reviews

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        return Review(
            id=row["id"],
            provider_id=row["provider_id"],
            user_name=row["user_name"],
            rating=row["rating"],
            comment=row["comment"],
            is_verified=bool(row["is_verified"]),
            helpful_votes=row["helpful_votes"],
            created_at=row["created_at"],
        )

    def list_reviews(self, provider_id: str) -> List[Review]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM provider_reviews WHERE provider_id = ? ORDER BY created_at DESC, id DESC",
                    (provider_id,),
                ).fetchall()
        return [self._row_to_review(row) for row in rows]

    def create_review(self, provider_id: str, request: ReviewRequest) -> Review:
        visitor_id = request.visitor_id.strip()
        comment = request.comment.strip()
        if not visitor_id:
            raise DirectoryStoreValidationError("visitor_id is required")
        if not comment:
            raise DirectoryStoreValidationError("Por favor escribe tu opinión")
        if not 1 <= request.rating <= 5:
            raise DirectoryStoreValidationError("rating must be between 1 and 5")
        if not self.get_provider(provider_id):
            raise DirectoryStoreNotFoundError("Provider not found")
        user_name = (request.user_name or "").strip()[:80] or ANONYMOUS_REVIEWER
        with self._lock:
            with self._connect() as conn:
                try:
                    cursor = conn.execute(
                        """
                        INSERT INTO provider_reviews (provider_id, visitor_id, user_name, rating, comment, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (provider_id, visitor_id, user_name, request.rating, comment[:2000], _now()),
                    )
                except sqlite3.IntegrityError as exc:
                    raise DirectoryStoreConflictError(
                        "Ya tienes una reseña para este proveedor. Solo puedes dejar una reseña por proveedor."
                    ) from exc
                conn.commit()
                row = conn.execute("SELECT * FROM provider_reviews WHERE id = ?", (cursor.lastrowid,)).fetchone()
        logger.info("review_created provider_id=%s rating=%s", provider_id, request.rating)
        return self._row_to_review(row)

    def mark_review_helpful(self, provider_id: str, review_id: int) -> Review:
        with self._lock:
            with self._connect() as conn:
                updated = conn.execute(
                    "UPDATE provider_reviews SET helpful_votes = helpful_votes + 1 WHERE id = ? AND provider_id = ?",
                    (review_id, provider_id),
                ).rowcount
                if not updated:
                    raise DirectoryStoreNotFoundError("Review not found")
                conn.commit()
                row = conn.execute("SELECT * FROM provider_reviews WHERE id = ?", (review_id,)).fetchone()
        return self._row_to_review(row)

    # Subscriptions

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(**{key: row[key] for key in row.keys()})

    def upsert_subscription(
        self,
        *,
        subscription_id: str,
        status: str,
        registration_id: Optional[str] = None,
        email: Optional[str] = None,
        plan_id: Optional[str] = None,
        plan_name: Optional[str] = None,
        customer_id: Optional[str] = None,
        price_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
    ) -> Subscription:
        now = _now()
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO provider_subscriptions (
                        id, registration_id, email, plan_id, plan_name, customer_id, subscription_id,
                        price_id, checkout_session_id, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(subscription_id) DO UPDATE SET
                        status = excluded.status,
                        registration_id = COALESCE(excluded.registration_id, provider_subscriptions.registration_id),
                        email = COALESCE(excluded.email, provider_subscriptions.email),
                        plan_id = COALESCE(excluded.plan_id, provider_subscriptions.plan_id),
                        plan_name = COALESCE(excluded.plan_name, provider_subscriptions.plan_name),
                        customer_id = COALESCE(excluded.customer_id, provider_subscriptions.customer_id),
                        price_id = COALESCE(excluded.price_id, provider_subscriptions.price_id),
                        checkout_session_id = COALESCE(excluded.checkout_session_id, provider_subscriptions.checkout_session_id),
                        updated_at = excluded.updated_at
                    """,
                    (
                        f"sub_{uuid4().hex[:10]}",
                        registration_id,
                        email,
                        plan_id,
                        plan_name,
                        customer_id,
                        subscription_id,
                        price_id,
                        checkout_session_id,
                        status,
                        now,
                        now,
                    ),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM provider_subscriptions WHERE subscription_id = ?",
                    (subscription_id,),
                ).fetchone()
        return self._row_to_subscription(row)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM provider_subscriptions WHERE subscription_id = ?",
                    (subscription_id,),
                ).fetchone()
        return self._row_to_subscription(row) if row else None


directory_store = DirectoryStore(db_path=get_settings().database_path)


def get_directory_store() -> DirectoryStore:
    return directory_store
