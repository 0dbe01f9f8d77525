"""
Campaign and linked Google account models.

Both tables are owned by the campaign management app; the sync engine only
reads them.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Date, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import List, Optional

from gsc_sync.models.base import Base


def parse_keywords(raw: Optional[str]) -> List[str]:
    """Split a newline-delimited keyword list, trimming blanks and duplicates."""
    if not raw:
        return []
    keywords = []
    seen = set()
    for line in raw.splitlines():
        keyword = line.strip()
        if keyword and keyword not in seen:
            seen.add(keyword)
            keywords.append(keyword)
    return keywords


class GoogleAccount(Base):
    """Google account linked to one or more campaigns"""
    __tablename__ = "google_accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, index=True, nullable=False)

    # OAuth tokens (webmasters.readonly scope)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaigns = relationship("Campaign", back_populates="google_account")

    def __repr__(self):
        return f"<GoogleAccount {self.email}>"


class Campaign(Base):
    """SEO campaign tracking a keyword list for one Search Console property"""
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)

    # Search Console property, e.g. https://example.com/ or sc-domain:example.com
    site_url = Column(String, index=True, nullable=False)
    # Newline-delimited tracked keywords
    keywords = Column(Text, nullable=False, default="")
    start_date = Column(Date, nullable=True)

    google_account_id = Column(Integer, ForeignKey("google_accounts.id"), nullable=True)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    google_account = relationship("GoogleAccount", back_populates="campaigns")

    @property
    def keyword_list(self) -> List[str]:
        return parse_keywords(self.keywords)

    def __repr__(self):
        return f"<Campaign {self.id} '{self.name}' {self.site_url}>"
