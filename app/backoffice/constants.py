"""
Central constants for the back-office.
"""
from __future__ import annotations

CURRENCIES = ("NPR", "USD", "EUR", "GBP", "INR")

PRODUCT_CATEGORIES = (
    "Clothing",
    "Electronics",
    "Furniture",
    "Books",
    "Toys",
    "Sports",
    "Home & Garden",
    "Beauty & Health",
    "Automotive",
    "Other",
)

PRODUCT_STATUSES = ("available", "out_of_stock")

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled", "refunded")

SHIPPING_ADDRESS_FIELDS = ("street", "city", "state", "country", "postal_code")

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"})

# Upload folders inside the storage bucket
PRODUCT_IMAGE_FOLDER = "products"
PROFILE_IMAGE_FOLDER = "profiles"
