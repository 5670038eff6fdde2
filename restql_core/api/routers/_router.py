"""
RestQL router object shared by all router modules
"""

from fastapi import APIRouter


router = APIRouter()
