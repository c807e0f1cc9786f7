from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from finance_copilot.models import CATEGORIES


@dataclass(frozen=True)
class PatternTable:
    """
    Built-in merchant substrings per category.

    Categories are scanned in declaration order and the first substring hit
    wins, so more specific categories must be declared before broad ones.
    """
    entries: Mapping[str, tuple[str, ...]]
    version: str = "1"
    _order: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        unknown = [name for name in self.entries if name not in CATEGORIES]
        if unknown:
            raise ValueError(f"Unknown categories in pattern table: {', '.join(unknown)}")
        frozen = {name: tuple(p.upper() for p in patterns) for name, patterns in self.entries.items()}
        object.__setattr__(self, "entries", MappingProxyType(frozen))
        object.__setattr__(self, "_order", tuple(frozen))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Sequence[str]], version: str = "1") -> "PatternTable":
        return cls(entries={name: tuple(patterns) for name, patterns in mapping.items()}, version=version)

    def __iter__(self) -> Iterator[tuple[str, tuple[str, ...]]]:
        for name in self._order:
            yield name, self.entries[name]

    def __len__(self) -> int:
        return sum(len(patterns) for patterns in self.entries.values())

    def match(self, merchant: str) -> str | None:
        upper = merchant.upper()
        for category, patterns in self:
            for pattern in patterns:
                if pattern in upper:
                    return category
        return None


_DEFAULT_PATTERNS: dict[str, tuple[str, ...]] = {
    "Coffee": (
        "STARBUCKS", "COFFEE", "DUNKIN", "PEET", "CARIBOU", "COSTA", "TIM HORTON", "PHILZ",
        "BLUE BOTTLE", "CAFE", "ESPRESSO", "DUTCH BROS", "PEETS",
    ),
    "Groceries": (
        "WHOLE FOODS", "SAFEWAY", "TRADER JOE", "KROGER", "WALMART", "COSTCO", "ALDI", "PUBLIX",
        "WEGMANS", "HEB", "MARKET", "GROCERY", "SUPERMARKET", "FOOD LION", "GIANT", "HARRIS TEETER",
        "SPROUTS", "FRESH", "FOODS", "INSTACART",
    ),
    "Dining": (
        "RESTAURANT", "PIZZA", "MCDONALD", "CHIPOTLE", "SUBWAY", "BURGER", "TACO", "WENDY",
        "CHICK-FIL", "PANERA", "OLIVE GARDEN", "APPLEBEE", "IHOP", "DENNY", "GRUBHUB", "DOORDASH",
        "UBEREATS", "POSTMATES", "SEAMLESS", "YELP EAT", "CHILI", "OUTBACK", "RED ROBIN",
        "BUFFALO WILD", "FIVE GUYS", "IN-N-OUT", "SHAKE SHACK", "WINGSTOP", "DOMINO", "PAPA JOHN",
        "LITTLE CAESAR", "KFC", "POPEYE", "PANDA EXPRESS", "NOODLES", "SUSHI", "RAMEN", "PHO",
        "THAI", "INDIAN", "CHINESE", "MEXICAN", "ITALIAN", "GRILL", "BBQ", "STEAKHOUSE", "DINER",
        "BISTRO", "EATERY", "KITCHEN", "CANTINA", "TAVERN", "PUB", "BAR & GRILL",
    ),
    "Transportation": (
        "UBER", "LYFT", "TAXI", "CAB", "METRO", "TRANSIT", "BUS", "TRAIN", "AMTRAK", "PARKING",
        "TOLL", "BIRD", "LIME", "SCOOTER",
    ),
    "Gas": (
        "SHELL", "CHEVRON", "EXXON", "BP ", "MOBIL", "TEXACO", "ARCO", "CITGO", "SUNOCO",
        "MARATHON", "VALERO", "PHILLIPS 66", "GAS", "FUEL", "PETRO", "76 ", "SPEEDWAY", "WAWA",
        "QUIKTRIP", "RACETRAC", "CIRCLE K",
    ),
    "Entertainment": (
        "NETFLIX", "SPOTIFY", "HULU", "DISNEY", "HBO", "AMAZON PRIME", "APPLE TV", "YOUTUBE",
        "PEACOCK", "PARAMOUNT", "MOVIE", "CINEMA", "THEATRE", "THEATER", "CONCERT",
        "TICKETMASTER", "STUBHUB", "EVENTBRITE", "STEAM", "PLAYSTATION", "XBOX", "NINTENDO",
        "GAMING", "AMC ", "REGAL", "FANDANGO", "TWITCH", "CRUNCHYROLL", "ESPN",
    ),
    "Shopping": (
        "TARGET", "AMAZON", "EBAY", "ETSY", "BEST BUY", "APPLE STORE", "IKEA", "HOME DEPOT",
        "LOWES", "BED BATH", "MACYS", "NORDSTROM", "KOHLS", "JC PENNEY", "SEPHORA", "ULTA", "NIKE",
        "ADIDAS", "GAP", "OLD NAVY", "ZARA", "H&M", "FOREVER 21", "TJ MAXX", "ROSS", "MARSHALLS",
        "DOLLAR", "STAPLES", "OFFICE DEPOT", "MICHAELS", "HOBBY LOBBY", "JOANN", "LULULEMON",
        "FOOT LOCKER", "FINISH LINE", "DICKS SPORTING", "REI ", "BASS PRO", "CABELAS",
    ),
    "Healthcare": (
        "PHARMACY", "CVS", "WALGREENS", "RITE AID", "DOCTOR", "HOSPITAL", "MEDICAL", "DENTAL",
        "VISION", "OPTOMETRY", "CLINIC", "HEALTH", "URGENT CARE", "KAISER", "BLUE CROSS", "AETNA",
        "UNITED HEALTH", "CIGNA", "QUEST DIAG", "LABCORP", "THERAPY", "COUNSELING",
        "MENTAL HEALTH", "CHIROPRACT",
    ),
    "Fitness": (
        "GYM", "FITNESS", "PLANET FITNESS", "LA FITNESS", "24 HOUR FITNESS", "EQUINOX",
        "ORANGETHEORY", "CROSSFIT", "YOGA", "PELOTON", "CLASSPASS", "ANYTIME FITNESS", "GOLD GYM",
        "LIFETIME", "YMCA", "YWCA",
    ),
    "Utilities": (
        "ELECTRIC", "GAS BILL", "WATER", "SEWER", "TRASH", "WASTE", "COMCAST", "XFINITY",
        "VERIZON", "AT&T", "T-MOBILE", "SPRINT", "INTERNET", "CABLE", "PG&E",
        "SOUTHERN CALIFORNIA EDISON", "CON EDISON", "DUKE ENERGY", "DOMINION", "NATIONAL GRID",
    ),
    "Insurance": (
        "INSURANCE", "GEICO", "STATE FARM", "ALLSTATE", "PROGRESSIVE", "LIBERTY MUTUAL", "FARMERS",
        "USAA", "NATIONWIDE", "AFLAC", "METLIFE", "PRUDENTIAL",
    ),
    "Subscriptions": (
        "SUBSCRIPTION", "MEMBERSHIP", "ADOBE", "MICROSOFT", "DROPBOX", "ICLOUD", "GOOGLE STORAGE",
        "GOOGLE ONE", "MEDIUM", "SUBSTACK", "PATREON", "GITHUB", "NOTION", "SLACK", "ZOOM", "CANVA",
        "GRAMMARLY", "LASTPASS", "1PASSWORD", "DASHLANE", "VPN", "NORDVPN", "EXPRESSVPN", "AUDIBLE",
        "KINDLE",
    ),
    "Travel": (
        "AIRLINE", "UNITED", "DELTA", "AMERICAN AIRLINES", "SOUTHWEST", "JETBLUE", "SPIRIT",
        "FRONTIER", "HOTEL", "MARRIOTT", "HILTON", "HYATT", "AIRBNB", "VRBO", "BOOKING", "EXPEDIA",
        "KAYAK", "TRIVAGO", "HERTZ", "ENTERPRISE", "AVIS", "BUDGET", "NATIONAL CAR", "ALAMO",
        "TURO", "CRUISE",
    ),
    "Education": (
        "UNIVERSITY", "COLLEGE", "SCHOOL", "TUITION", "COURSERA", "UDEMY", "SKILLSHARE",
        "MASTERCLASS", "LINKEDIN LEARNING", "DUOLINGO", "BOOKS", "TEXTBOOK", "CHEGG", "QUIZLET",
        "KHAN ACADEMY", "CODECADEMY", "UDACITY", "EDX", "PLURALSIGHT",
    ),
    "Personal Care": (
        "SALON", "BARBER", "HAIR", "SPA", "MASSAGE", "NAIL", "BEAUTY", "WAXING", "LASER",
        "DERMATOLOG", "SKINCARE", "COSMETIC",
    ),
    "Pets": (
        "PETCO", "PETSMART", "VET", "VETERINARY", "PET SUPPLIES", "CHEWY", "BANFIELD", "PET FOOD",
        "GROOMING",
    ),
    "Home": (
        "RENT", "MORTGAGE", "PROPERTY", "MAINTENANCE", "REPAIR", "PLUMBER", "ELECTRICIAN",
        "CLEANING", "MAID", "HOUSEKEEPING", "LANDLORD", "APARTMENT", "CONDO", "HOA",
    ),
    "Transfer": (
        "VENMO", "PAYPAL", "ZELLE", "CASH APP", "WIRE", "ACH", "TRANSFER", "SEND MONEY",
        "PAYMENT TO", "PAYMENT FROM",
    ),
    "Cash Withdrawal": ("ATM", "CASH", "WITHDRAWAL", "CASH BACK"),
    "Fees": (
        "FEE", "CHARGE", "OVERDRAFT", "LATE FEE", "SERVICE CHARGE", "MAINTENANCE FEE",
        "MONTHLY FEE", "ANNUAL FEE", "INTEREST CHARGE", "FINANCE CHARGE",
    ),
    "Income": (
        "PAYROLL", "SALARY", "DEPOSIT", "DIRECT DEP", "INTEREST", "DIVIDEND", "REFUND",
        "REIMBURSEMENT", "BONUS", "COMMISSION", "INCOME", "CREDIT", "CASHBACK", "REWARD",
    ),
    "Other": (),
}

DEFAULT_PATTERN_TABLE = PatternTable(entries=_DEFAULT_PATTERNS, version="2024.1")
