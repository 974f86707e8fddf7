# models/user.py
"""
User model - mirror of the user/referral collaborator.
Only the fields the settlement core needs: identity, sponsor and role.
"""
from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship, backref
from models.base import Base, AuditMixin


class User(Base, AuditMixin):
    __tablename__ = 'users'

    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=True, index=True)

    # Спонсор (userID пригласившего)
    referredBy = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)

    role = Column(String, default="user")  # user, admin
    status = Column(String, default="active")  # active, blocked, deleted

    referrals = relationship('User', backref=backref('sponsor', remote_side=[userID]))
    def __repr__(self):
        return f"<User(userID={self.userID}, referredBy={self.referredBy}, role={self.role})>"
