"""Request dependencies."""

from fastapi import Header, Request

from ..services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    return x_user_id
