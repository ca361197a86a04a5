from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    """An account row as the API sees it. Subscription fields live in SubscriptionState."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    display_name: str
    stripe_customer_id: Optional[str] = None
    created_at: datetime

    @staticmethod
    def display_name_for(user_id: str, display_name: Optional[str] = None, email: Optional[str] = None) -> str:
        """Explicit name, else the email's local part, else the raw user id."""
        if display_name and display_name.strip():
            return display_name.strip()
        if email and "@" in email:
            return email.split("@", 1)[0]
        return user_id
