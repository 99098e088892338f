import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from circulation.database import get_db
from circulation.models.user import User
from circulation.schemas.auth import AdminUserCreate, MembershipUpdate, UserResponse
from circulation.services.access_policy import Principal, UserAction, authorize_user_action
from circulation.services.auth import get_password_hash, require_staff

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["User Management"])

def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.user_id == user_id, User.is_active.is_(True)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user

def _authorize(principal: Principal, target_user_id, action: UserAction, target_role: str) -> None:
    decision = authorize_user_action(principal, target_user_id, action, target_role)
    if decision.denied:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)

@router.get("/", response_model=List[UserResponse])
async def list_users(
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """List active user accounts."""
    users = db.query(User).filter(User.is_active.is_(True)).order_by(User.user_id).all()
    return [UserResponse(**user.to_dict()) for user in users]

@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: AdminUserCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Create a member or, for administrators, a staff account."""
    _authorize(principal, None, UserAction.CREATE, user_data.user_role)

    existing_user = db.query(User).filter(User.user_email == user_data.user_email).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    db_user = User(
        user_fname=user_data.user_fname,
        user_lname=user_data.user_lname,
        user_email=user_data.user_email,
        user_password_hash=get_password_hash(user_data.password),
        phone_number=user_data.phone_number,
        user_role=user_data.user_role,
        membership_status='active',
        is_active=True,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    logger.info(f"User {principal.principal_id} created {db_user.user_role} account {db_user.user_id}")
    return UserResponse(**db_user.to_dict())

@router.patch("/{user_id}/membership", response_model=UserResponse)
async def update_membership(
    user_id: int,
    update: MembershipUpdate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Suspend, expire or reactivate a membership."""
    user = _get_user_or_404(db, user_id)
    _authorize(principal, user_id, UserAction.UPDATE, user.user_role)

    user.membership_status = update.membership_status
    db.commit()
    db.refresh(user)

    logger.info(f"User {principal.principal_id} set membership of {user_id} to {user.membership_status}")
    return UserResponse(**user.to_dict())

@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Deactivate an account. Loans and fines are kept for history."""
    user = _get_user_or_404(db, user_id)
    _authorize(principal, user_id, UserAction.DELETE, user.user_role)

    open_loans = [loan for loan in user.loans if loan.return_date is None]
    if open_loans:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User still has {len(open_loans)} book(s) on loan"
        )

    user.is_active = False
    db.commit()
    logger.info(f"User {principal.principal_id} deleted account {user_id}")
