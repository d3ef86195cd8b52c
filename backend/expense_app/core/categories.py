# Default spending categories (name, icon, color)
# Seeded once when the categories table is empty. The AI categorizer may only
# answer with one of these names; anything else is mapped to "Other".

DEFAULT_CATEGORIES = [
    ("Food & Dining", "fas fa-utensils", "#FF6B6B"),
    ("Transportation", "fas fa-car", "#4ECDC4"),
    ("Entertainment", "fas fa-film", "#45B7D1"),
    ("Shopping", "fas fa-shopping-bag", "#96CEB4"),
    ("Utilities", "fas fa-bolt", "#FFEAA7"),
    ("Healthcare", "fas fa-heartbeat", "#DDA0DD"),
    ("Travel", "fas fa-plane", "#98D8C8"),
    ("Education", "fas fa-graduation-cap", "#F7DC6F"),
    ("Groceries", "fas fa-shopping-cart", "#BB8FCE"),
    ("Bills & Services", "fas fa-file-invoice", "#85C1E9"),
    ("Gas & Fuel", "fas fa-gas-pump", "#F8C471"),
    ("Home & Garden", "fas fa-home", "#82E0AA"),
    ("Personal Care", "fas fa-spa", "#F1948A"),
    ("Other", "fas fa-question", "#BDC3C7"),
]

EXPENSE_CATEGORIES = [name for name, _, _ in DEFAULT_CATEGORIES]

FALLBACK_CATEGORY = "Other"

def match_category_name(label):
    """
    Maps a free-form label onto one of EXPENSE_CATEGORIES (case-insensitive).
    Returns None when nothing matches.
    """
    if not label:
        return None
    wanted = str(label).strip().lower()
    for name in EXPENSE_CATEGORIES:
        if name.lower() == wanted:
            return name
    return None
