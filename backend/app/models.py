from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Category(BaseModel):
    id: str
    name: str
    slug: str
    icon: str = ""
    display_order: int = 0


class ProviderService(BaseModel):
    id: str
    provider_id: str
    name: str
    description: Optional[str] = None
    price: float = Field(default=0.0, ge=0)


class Provider(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    city: Optional[str] = None
    category_id: Optional[str] = None
    whatsapp: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    profile_image_url: Optional[str] = None
    gallery: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_premium: bool = False
    featured: bool = False
    created_at: str = ""
    updated_at: str = ""
    services: Optional[List[ProviderService]] = None


class ProviderListResponse(BaseModel):
    providers: List[Provider]
    total: int
    message: Optional[str] = None


class CategoryProvidersResponse(BaseModel):
    category: Category
    providers: List[Provider]
    message: Optional[str] = None


class ProviderUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    city: Optional[str] = None
    category_id: Optional[str] = None
    whatsapp: Optional[str] = None
    phone: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    is_premium: Optional[bool] = None
    featured: Optional[bool] = None


class ProviderSelfUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    city: Optional[str] = None
    whatsapp: Optional[str] = None
    phone: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None


class ReviewRequest(BaseModel):
    visitor_id: str
    rating: int
    comment: str
    user_name: Optional[str] = None


class Review(BaseModel):
    id: int
    provider_id: str
    user_name: str
    rating: int
    comment: str
    is_verified: bool = False
    helpful_votes: int = 0
    created_at: str = ""


class RatingBucket(BaseModel):
    rating: int
    count: int
    percentage: float


class ReviewSummary(BaseModel):
    total: int
    average_rating: float
    verified_count: int
    distribution: List[RatingBucket]


class ProviderReviewsResponse(BaseModel):
    reviews: List[Review]
    summary: ReviewSummary
    message: Optional[str] = None


class ServiceInput(BaseModel):
    name: str
    description: str = ""
    price: float = Field(default=0.0, ge=0)


class RegistrationRequest(BaseModel):
    business_name: str
    contact_name: str
    email: str
    phone: str = ""
    whatsapp: str = ""
    city: Optional[str] = None
    category_id: Optional[str] = None
    description: str = ""
    services: List[ServiceInput] = Field(default_factory=list)
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    website: Optional[str] = None


class Registration(BaseModel):
    id: str
    business_name: str
    contact_name: str
    email: str
    phone: str = ""
    whatsapp: str = ""
    city: Optional[str] = None
    category_id: Optional[str] = None
    description: str = ""
    services: List[ServiceInput] = Field(default_factory=list)
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    website: Optional[str] = None
    status: Literal["pending", "approved", "rejected"] = "pending"
    admin_notes: Optional[str] = None
    provider_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = ""
    access_code: Optional[str] = None


class RegistrationStatus(BaseModel):
    id: str
    status: str
    admin_notes: Optional[str] = None
    provider_id: Optional[str] = None
    payment_status: Optional[str] = None


class RegistrationDecisionRequest(BaseModel):
    notes: Optional[str] = None


class Plan(BaseModel):
    id: str
    name: str
    price: float
    price_id: Optional[str] = None
    description: str = ""
    billing_period: Optional[Literal["mensual", "anual"]] = None
    features: List[str] = Field(default_factory=list)


class Subscription(BaseModel):
    id: str
    registration_id: Optional[str] = None
    email: Optional[str] = None
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: str
    price_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    status: str
    created_at: str = ""
    updated_at: str = ""


class FavoriteRequest(BaseModel):
    visitor_id: str
    provider_id: str


class FavoriteProvider(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    profile_image_url: Optional[str] = None
    whatsapp: Optional[str] = None


class BlogPost(BaseModel):
    id: int
    title: str
    content: str
    author: Optional[str] = None
    image_url: Optional[str] = None
    is_published: bool = False
    created_at: str = ""
    updated_at: str = ""


class BlogListResponse(BaseModel):
    posts: List[BlogPost]
    message: Optional[str] = None


class BlogPostCreate(BaseModel):
    title: str
    content: str
    author: Optional[str] = None
    image_url: Optional[str] = None
    is_published: bool = False


class BlogPostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    image_url: Optional[str] = None
    is_published: Optional[bool] = None


class ImageUploadResponse(BaseModel):
    key: str
    url: str


class AskRequest(BaseModel):
    question: str
    session_id: Optional[str] = None


class AskResponse(BaseModel):
    answer: str
    ok: bool = True
    record_id: Optional[int] = None
    session_id: str
    sources_used: List[str] = Field(default_factory=list)


class FeedbackVoteRequest(BaseModel):
    record_id: int
    useful: bool
    comment: Optional[str] = None


class FeedbackRecord(BaseModel):
    id: int
    session_id: str
    client_id: Optional[str] = None
    question: str
    response: str = ""
    sources_used: List[str] = Field(default_factory=list)
    was_useful: Optional[bool] = None
    comment: Optional[str] = None
    tokens_input: int = 0
    tokens_output: int = 0
    cost_usd: float = 0.0
    processing_time_ms: int = 0
    created_at: str = ""
    voted_at: Optional[str] = None


class FeedbackPage(BaseModel):
    records: List[FeedbackRecord]
    total: int
    page: int
    page_size: int
    filter: Literal["all", "useful", "not_useful"]


class AISettings(BaseModel):
    is_enabled: bool = True
    rate_limit_per_minute: int = Field(default=2, ge=0)
    rate_limit_per_hour: int = Field(default=3, ge=0)
    rate_limit_per_day: int = Field(default=5, ge=0)
    max_question_chars: int = Field(default=1200, ge=1)
    welcome_message: str = "¡Hola! Soy tu asistente virtual de Charlitron Eventos 360. ¿En qué puedo ayudarte?"


class AISettingsUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    rate_limit_per_minute: Optional[int] = Field(default=None, ge=0)
    rate_limit_per_hour: Optional[int] = Field(default=None, ge=0)
    rate_limit_per_day: Optional[int] = Field(default=None, ge=0)
    max_question_chars: Optional[int] = Field(default=None, ge=1)
    welcome_message: Optional[str] = None


class TopQuestion(BaseModel):
    question: str
    frequency: int


class AIStats(BaseModel):
    period: Literal["today", "week", "month"]
    total_questions: int = 0
    total_cost_usd: float = 0.0
    avg_processing_time_ms: float = 0.0
    total_tokens_input: int = 0
    total_tokens_output: int = 0
    unique_users: int = 0
    useful_votes: int = 0
    not_useful_votes: int = 0
    top_questions: List[TopQuestion] = Field(default_factory=list)


class TableDiagnostic(BaseModel):
    exists: bool
    count: int = 0
    columns: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class DiagnosticsReport(BaseModel):
    tables: Dict[str, TableDiagnostic]
    configuration: Dict[str, Any]
    llm_configured: bool
    generated_at: str


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: Optional[str] = Field(default=None, alias="priceId")
    registration_id: Optional[str] = Field(default=None, alias="registrationId")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    plan_name: Optional[str] = Field(default=None, alias="planName")


class AuthLoginRequest(BaseModel):
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: str


class ProviderLoginRequest(BaseModel):
    registration_id: str
    access_code: str


class AuthMeResponse(BaseModel):
    subject: str
