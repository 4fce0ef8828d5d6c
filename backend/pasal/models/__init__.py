from .auth import User, Address, SessionToken
from .catalog import Category, Brand, Product, ProductVariant
from .promotions import Discount, discount_products, discount_categories
from .orders import Order, OrderItem, OrderTimelineEntry, PendingPayment
from .engagement import Review, WishlistItem
from .locations import Location

__all__ = [
    'User', 'Address', 'SessionToken',
    'Category', 'Brand', 'Product', 'ProductVariant',
    'Discount', 'discount_products', 'discount_categories',
    'Order', 'OrderItem', 'OrderTimelineEntry', 'PendingPayment',
    'Review', 'WishlistItem',
    'Location',
]
