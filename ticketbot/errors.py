# ticketbot/errors.py
from __future__ import annotations


class TicketBotError(Exception):
    """
    Base for every rejection the engine reports back to the invoking surface.
    `message` is shown to the user as-is; `status_code` is used by the HTTP API.
    """

    status_code = 400
    default_message = "Request rejected"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateTicket(TicketBotError):
    status_code = 409
    default_message = "You already have an active ticket!"


class AlreadyClaimed(TicketBotError):
    status_code = 409
    default_message = "This ticket has already been claimed!"


class AlreadyCompleted(TicketBotError):
    status_code = 409
    default_message = "This order has already been completed!"


class NotClaimed(TicketBotError):
    status_code = 409
    default_message = "This ticket has not been claimed by a chef yet!"


class ChefUnavailable(TicketBotError):
    status_code = 409
    default_message = "No chefs are currently available. Please try again later."


class NotAuthorized(TicketBotError):
    status_code = 403
    default_message = "You don't have permission to do that!"


class NotAssignedChef(TicketBotError):
    status_code = 403
    default_message = "Only the assigned chef or admins can complete this order!"


class HasActiveTickets(TicketBotError):
    status_code = 409
    default_message = "This chef still has active tickets."


class NotFound(TicketBotError):
    status_code = 404
    default_message = "Not found"


class InvalidAmount(TicketBotError):
    status_code = 422
    default_message = "The order amount cannot be negative!"


class ChannelUnavailable(TicketBotError):
    status_code = 502
    default_message = "Could not open a ticket channel. Please try again."


class PersistenceFailure(TicketBotError):
    status_code = 503
    default_message = "The database is unavailable, nothing was changed. Please retry."
