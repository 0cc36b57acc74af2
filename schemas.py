import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

MONEY = {"max_digits": 10, "decimal_places": 2}


class UserIn(BaseModel):
    username: str = Field(..., max_length=100)


class IncomeIn(BaseModel):
    income: Decimal = Field(..., **MONEY)


class BudgetIn(BaseModel):
    budget: Decimal = Field(..., **MONEY)


class TransactionIn(BaseModel):
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=255)
    category: Optional[str] = Field(default=None, max_length=50)
    amount: Decimal = Field(..., **MONEY)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    income: float
    created_at: dt.datetime


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    budget: float


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    date: dt.date
    description: Optional[str]
    category: Optional[str]
    amount: float
    created_at: dt.datetime


class WeeklyExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    week: str
    week_num: int
    total: float


class SuccessOut(BaseModel):
    success: bool = True
