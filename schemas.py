"""
Database Schemas

Each Pydantic model describes the documents of one MongoDB collection.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Post -> "post" collection
- NewsletterCampaign -> "newslettercampaign" collection

Routes build new documents through these models so defaults are filled in
consistently; `model_dump()` of a model is what gets inserted. References to
other documents are stored as ObjectIds.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

PostStatus = Literal["draft", "pending_review", "published", "rejected"]
Role = Literal["author", "admin"]
AffiliateNetwork = Literal["Amazon", "Flipkart", "Myntra", "Ajio", "Other"]
CampaignStatus = Literal["draft", "scheduled", "sending", "sent", "failed"]

HEX_COLOR = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class SocialLinks(BaseModel):
    twitter: Optional[str] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None
    website: Optional[str] = None


class UserSettings(BaseModel):
    email_notifications: bool = True
    comment_notifications: bool = True
    like_notifications: bool = True
    follower_notifications: bool = True
    newsletter_subscription: bool = True
    profile_visibility: Literal["public", "private"] = "public"
    show_email: bool = False
    allow_follow: bool = True
    default_post_status: Literal["draft", "pending_review"] = "draft"
    auto_save_drafts: bool = True
    theme: Literal["light", "dark", "system"] = "system"
    language: Literal["en", "hi"] = "en"


class User(Document):
    """
    Registered authors and admins
    Collection name: "user"
    """
    name: str = Field(..., max_length=60, description="Display name")
    email: EmailStr = Field(..., description="Unique, stored lowercase")
    username: Optional[str] = Field(None, min_length=3, max_length=30, description="Unique handle")
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Role = "author"
    bio: str = Field("", max_length=500)
    avatar_url: Optional[str] = None
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    settings: UserSettings = Field(default_factory=UserSettings)
    is_active: bool = True
    email_verified: bool = False
    last_login_at: Optional[datetime] = None
    followers: List[Any] = Field(default_factory=list, description="User ids following this user")
    following: List[Any] = Field(default_factory=list, description="User ids this user follows")
    stats: dict = Field(default_factory=dict, description="Denormalized counters")
    reset_password_token: Optional[str] = Field(None, description="sha256 of the emailed token")
    reset_password_expire: Optional[datetime] = None


class Category(Document):
    """
    Post categories, also used to group store products
    Collection name: "category"
    """
    name: str = Field(..., max_length=50)
    slug: str
    description: str = Field("", max_length=200)
    color: str = Field("#3B82F6", pattern=HEX_COLOR)
    post_count: int = 0
    product_count: int = 0
    is_active: bool = True


class Comment(Document):
    """Embedded in Post.comments"""
    id: Any
    author_id: Optional[Any] = None
    guest_name: Optional[str] = None
    guest_email: Optional[EmailStr] = None
    content: str = Field(..., max_length=1000)
    parent_comment_id: Optional[Any] = None
    is_approved: bool = False
    likes: List[Any] = Field(default_factory=list)
    is_reported: bool = False
    report_count: int = 0
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    created_at: datetime


class Rating(Document):
    """Embedded in Post.ratings"""
    user_id: Any
    rating: int = Field(..., ge=1, le=5)
    created_at: datetime


class Post(Document):
    """
    Blog posts
    Collection name: "post"
    """
    title: str = Field(..., max_length=200)
    slug: str
    excerpt: str = Field("", max_length=300)
    content: str
    featured_image_url: Optional[str] = None
    featured_image_alt: Optional[str] = None
    author_id: Any
    category_id: Any
    tags: List[str] = Field(default_factory=list)
    status: PostStatus = "draft"
    published_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[Any] = None
    reviewed_at: Optional[datetime] = None
    likes: List[Any] = Field(default_factory=list)
    saves: List[Any] = Field(default_factory=list, description="Users who bookmarked the post")
    views: int = 0
    reading_time: int = 1
    comments: List[dict] = Field(default_factory=list)
    is_featured: bool = False
    allow_comments: bool = True
    seo_title: Optional[str] = Field(None, max_length=60)
    seo_description: Optional[str] = Field(None, max_length=160)
    seo_keywords: List[str] = Field(default_factory=list)
    lang: Literal["en", "hi"] = "en"
    content_type: Literal["blog", "diy", "recipe"] = "blog"
    ratings: List[dict] = Field(default_factory=list)
    average_rating: float = 0
    affiliate_links: List[dict] = Field(default_factory=list)
    editing: dict = Field(
        default_factory=lambda: {"is_locked": False, "locked_by": None, "locked_at": None},
        description="Edit lock; stale after 30 minutes",
    )
    last_edited_by: Optional[Any] = None
    last_edited_at: Optional[datetime] = None
    edit_reason: Optional[str] = None


class ProfileView(Document):
    """
    One visit to an author's profile page
    Collection name: "profileview"
    """
    profile_id: Any
    username: Optional[str] = None
    timestamp: datetime
    referrer: str = "direct"
    user_agent: Optional[str] = None
    viewer_user_id: Optional[Any] = None
    session_id: Optional[str] = None
    time_on_profile: int = 0
    sections_viewed: List[str] = Field(default_factory=list)
    followed_after_view: bool = False
    followed_at: Optional[datetime] = None
    device_type: Literal["mobile", "tablet", "desktop", "unknown"] = "unknown"
    browser: Optional[str] = None
    os: Optional[str] = None


class PostAnalytics(Document):
    """
    One post's counters for one UTC day
    Collection name: "postanalytics"
    """
    post_id: Any
    date: str = Field(..., description="YYYY-MM-DD")
    views: dict = Field(default_factory=lambda: {"total": 0, "unique": 0})
    likes: int = 0
    comments: int = 0
    sources: dict = Field(default_factory=lambda: dict.fromkeys(("direct", "search", "social", "referral"), 0))
    devices: dict = Field(default_factory=lambda: dict.fromkeys(("desktop", "mobile", "tablet"), 0))
    visitors: List[str] = Field(default_factory=list, description="User ids or client keys seen that day")


class Notification(Document):
    """
    Collection name: "notification"
    """
    recipient_id: Any
    sender_id: Optional[Any] = None
    type: str
    post_id: Optional[Any] = None
    comment_id: Optional[Any] = None
    message: str
    link: Optional[str] = None
    is_read: bool = False


class Newsletter(Document):
    """
    Newsletter subscribers
    Collection name: "newsletter"
    """
    email: EmailStr
    is_active: bool = True
    subscribed_at: datetime
    unsubscribed_at: Optional[datetime] = None
    source: Literal["website", "footer", "popup", "manual", "import"] = "website"
    preferences: dict = Field(default_factory=lambda: {"frequency": "weekly", "categories": []})
    metadata: dict = Field(default_factory=dict)


class CampaignSettings(BaseModel):
    track_opens: bool = True
    track_clicks: bool = True
    allow_unsubscribe: bool = True


class CampaignAnalytics(BaseModel):
    total_recipients: int = 0
    sent_count: int = 0
    failed_count: int = 0
    open_count: int = 0
    click_count: int = 0
    unsubscribe_count: int = 0
    sent_emails: List[dict] = Field(default_factory=list)


class NewsletterCampaign(Document):
    """
    Collection name: "newslettercampaign"
    """
    title: str
    subject: str
    preview_text: Optional[str] = None
    content: str
    html_content: Optional[str] = None
    status: CampaignStatus = "draft"
    scheduled_for: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_by: Any
    analytics: CampaignAnalytics = Field(default_factory=CampaignAnalytics)
    target_audience: Literal["all", "category", "custom"] = "all"
    target_categories: List[Any] = Field(default_factory=list)
    target_emails: List[str] = Field(default_factory=list)
    template: Literal["default", "minimal", "featured", "digest"] = "default"
    featured_posts: List[Any] = Field(default_factory=list)
    settings: CampaignSettings = Field(default_factory=CampaignSettings)


class Brand(Document):
    """
    Collection name: "brand"
    """
    name: str = Field(..., max_length=100)
    slug: str
    description: Optional[str] = Field(None, max_length=500)
    logo: Optional[str] = None
    website: Optional[str] = None
    affiliate_program: Optional[str] = None
    color: str = "#000000"
    is_active: bool = True
    is_featured: bool = False
    product_count: int = 0


class Product(Document):
    """
    Affiliate store products
    Collection name: "product"
    """
    title: str = Field(..., max_length=200)
    slug: str
    description: str
    short_description: Optional[str] = Field(None, max_length=500)
    images: List[str] = Field(default_factory=list)
    featured_image: str
    brand_id: Optional[Any] = None
    category_id: Any
    subcategories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    currency: str = "INR"
    discount: int = 0
    affiliate_link: str
    affiliate_network: AffiliateNetwork = "Amazon"
    rating: float = Field(0, ge=0, le=5)
    review_count: int = 0
    is_active: bool = True
    is_featured: bool = False
    in_stock: bool = True
    click_count: int = 0
    view_count: int = 0
    last_clicked_at: Optional[datetime] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


def discount_percent(price: float, original_price: Optional[float]) -> int:
    if original_price and original_price > price:
        return round((original_price - price) / original_price * 100)
    return 0
