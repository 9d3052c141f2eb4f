from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
import logging

from models import UserRole

logger = logging.getLogger(__name__)

class PermissionChecker:
    """
    Permission enforcement.
    
    RULES:
    1. User must be authenticated
    2. User must have active_status = TRUE
    3. Only admins may unlock a filed GST period
    """
    
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
    
    async def get_authenticated_user(self, current_user: dict):
        """Load the token's user and validate it is still active"""
        user_id = current_user.get("user_id")
        
        try:
            user = await self.db.users.find_one({"_id": ObjectId(user_id)})
        except (InvalidId, TypeError):
            user = None
        
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )
        
        if not user.get("active_status", False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )
        
        # Convert _id to user_id for consistency
        user["user_id"] = str(user.pop("_id"))
        user.pop("hashed_password", None)
        
        return user
    
    async def check_admin_role(self, user: dict):
        """Check if user has the admin role"""
        if user.get("role") != UserRole.ADMIN.value:
            logger.warning(f"Admin operation refused for user:{user.get('user_id')}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin role required for this operation"
            )
        return True
