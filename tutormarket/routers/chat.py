"""
Chat router handling direct messages between users.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from typing import List
from tutormarket.auth_tools import get_active_user, get_current_user
from tutormarket.database.database import get_db, User, Message
from tutormarket.errors import ValidationFailed
from tutormarket.utilities import get_user_by_id, notify, user_names
from tutormarket.schemas.chat_schema import ConversationPartner, MessageCreate, MessageResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.logger import logger

router = APIRouter(prefix='/messages')

@router.post('', response_model=MessageResponse)
@limiter.limit("30/minute")
def send_message(
    request: Request,
    data: MessageCreate,
    sender: User = Depends(get_active_user),
    db: Session = Depends(get_db)
):
    """
    Send a message from the logged in user.

    Args:
        request (Request): The request object.
        data (MessageCreate): Receiver and message text.
        sender (User): The current authenticated user.
        db (Session): The database session dependency.

    Returns:
        Message: The sent message.

    Raises:
        NotFound: the receiver does not exist
        ValidationFailed: the sender is the receiver
    """
    if data.receiver_id == sender.id:
        raise ValidationFailed("You cannot send a message to yourself")
    receiver = get_user_by_id(db, data.receiver_id)

    message = Message(
        sender_id=sender.id,
        receiver_id=receiver.id,
        sender_name=sender.full_name,
        message=data.message
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    logger.info(f"Message {message.id} sent from {sender.id} to {receiver.id}")

    notify(db, receiver.id, "New message", f"New message from {sender.full_name}", type="message", related_id=message.id)
    return message

@router.get('/conversations', response_model=List[ConversationPartner])
def get_conversations(current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Everybody the user exchanged messages with, most recent conversation first."""
    messages = db.query(Message).filter(
        or_(Message.sender_id == current_user.sub, Message.receiver_id == current_user.sub)
    ).order_by(Message.created_at.desc()).all()

    latest = {}
    for message in messages:
        partner_id = message.receiver_id if message.sender_id == current_user.sub else message.sender_id
        if partner_id not in latest:
            latest[partner_id] = message

    names = user_names(db, latest.keys())
    return [
        {"user_id": partner_id, "full_name": names.get(partner_id), "last_message": message.message, "last_message_at": message.created_at}
        for partner_id, message in latest.items()
    ]

@router.get('/with/{user_id}', response_model=List[MessageResponse])
def get_conversation(user_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Messages between the logged in user and user_id, oldest first."""
    return db.query(Message).filter(
        or_(
            and_(Message.sender_id == current_user.sub, Message.receiver_id == user_id),
            and_(Message.sender_id == user_id, Message.receiver_id == current_user.sub)
        )
    ).order_by(Message.created_at).all()
