from fastapi import APIRouter

from approvals.api.balances import balances_router
from approvals.api.employees import employees_router
from approvals.api.holidays import holidays_router
from approvals.api.reports import reports_router
from approvals.api.requests import requests_router, submissions_router
from approvals.api.rules import rules_router

api_router = APIRouter()
api_router.include_router(submissions_router)
api_router.include_router(requests_router)
api_router.include_router(rules_router)
api_router.include_router(holidays_router)
api_router.include_router(balances_router)
api_router.include_router(reports_router)
api_router.include_router(employees_router)
