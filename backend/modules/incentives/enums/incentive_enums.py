from enum import Enum


class RuleKind(str, Enum):
    MONTHLY_SLAB = "MONTHLY_SLAB"
    QUARTERLY_EVAL = "QUARTERLY_EVAL"
    DAILY_TARGET = "DAILY_TARGET"
    PRODUCT = "PRODUCT"
    TELESALES = "TELESALES"
    SPIN_WHEEL = "SPIN_WHEEL"
    REFERRAL = "REFERRAL"
    MYSTERY_PRODUCT = "MYSTERY_PRODUCT"
    TEAM_BATTLE = "TEAM_BATTLE"
    LEVEL_POLICY = "LEVEL_POLICY"


class TargetType(str, Enum):
    CUSTOMER_COUNT = "CUSTOMER_COUNT"
    REVENUE = "REVENUE"
    PRODUCT_UNITS = "PRODUCT_UNITS"


class StoreType(str, Enum):
    CHAMPION = "CHAMPION"
    LEARNING = "LEARNING"
    STANDARD = "STANDARD"


class RewardCalculation(str, Enum):
    FLAT = "FLAT"
    PCT = "PCT"


class PayoutPeriod(str, Enum):
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"


class PayoutStatus(str, Enum):
    DUE = "DUE"
    PAID = "PAID"
    VOID = "VOID"


class ComponentType(str, Enum):
    SLAB = "SLAB"
    DAILY_CUSTOMER = "DAILY_CUSTOMER"
    PRODUCT = "PRODUCT"
    TELE = "TELE"
    SPIN = "SPIN"
    BATTLE = "BATTLE"
    ADJUSTMENT = "ADJUSTMENT"


class SpinRewardType(str, Enum):
    CASH = "CASH"
    POINTS = "POINTS"
    LEAVE = "LEAVE"
    VOUCHER = "VOUCHER"


class UnlockCondition(str, Enum):
    DAILY_TARGET_MET = "DAILY_TARGET_MET"
    MONTHLY_TARGET_EXCEEDED = "MONTHLY_TARGET_EXCEEDED"
    MYSTERY_UNLOCK = "MYSTERY_UNLOCK"


class SpinUnlockReason(str, Enum):
    DAILY_TARGET = "DAILY_TARGET"
    MONTHLY_TARGET = "MONTHLY_TARGET"
    MANUAL = "MANUAL"


class SpinWindow(str, Enum):
    DAY = "DAY"
    MONTH = "MONTH"


class Consequence(str, Enum):
    BASE_ONLY = "BASE_ONLY"
    PIP = "PIP"
    NOTICE = "NOTICE"


class LeaderboardScope(str, Enum):
    USER = "USER"
    STORE = "STORE"
    CITY = "CITY"
    STATE = "STATE"
    COUNTRY = "COUNTRY"


class LeaderboardPeriod(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class StaffLevel(str, Enum):
    A = "A"
    B = "B"
    C = "C"
