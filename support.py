"""
Support tickets written from the help center contact form.
"""
import logging

from pymongo.errors import PyMongoError

from database import create_document
from errors import PersistenceError
from schemas import SupportTicket

logger = logging.getLogger(__name__)

SUPPORT_TICKETS = "support_tickets"


def submit_ticket(db, ticket: SupportTicket) -> str:
    try:
        ticket_id = create_document(db, SUPPORT_TICKETS, ticket)
    except PyMongoError as e:
        logger.error(f"Error submitting ticket: {e}")
        raise PersistenceError("Failed to send message. Please try again.")
    logger.info(f"Support ticket {ticket_id} opened: {ticket.subject}")
    return ticket_id
