from fastapi import Request

from nodectl.api.services import Services
from nodectl.modules.models import Caller


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_caller(request: Request) -> Caller:
    return request.state.caller
