# search/classifier.py
import re

from .models import QueryClassification, QueryKind

# Checked first: unprocessed ingredients and how they were cooked
WHOLE_FOOD_PATTERNS = [
    # proteins
    r"\b(chicken|beef|pork|lamb|turkey|duck|veal|venison|bison|ham|bacon|steak)\b",
    r"\b(salmon|tuna|cod|tilapia|trout|halibut|mackerel|sardines?|anchov(y|ies)|haddock)\b",
    r"\b(shrimps?|prawns?|crabs?|lobsters?|mussels?|oysters?|clams?|scallops?|squid)\b",
    r"\b(eggs?|egg whites?|tofu|tempeh|seitan|lentils?|chickpeas?|beans?|edamame)\b",
    # fruit
    r"\b(apples?|bananas?|oranges?|grapes?|pears?|plums?|peach(es)?|apricots?|mangos?|mangoes)\b",
    r"\b(strawberr(y|ies)|blueberr(y|ies)|raspberr(y|ies)|blackberr(y|ies)|cherr(y|ies)|cranberr(y|ies))\b",
    r"\b(pineapples?|kiwis?|lemons?|limes?|avocados?|watermelons?|melons?|papayas?|figs?|dates|pomegranates?|coconuts?|grapefruits?)\b",
    # vegetables
    r"\b(broccoli|spinach|kale|lettuce|arugula|carrots?|potato(es)?|tomato(es)?|onions?|garlic|shallots?)\b",
    r"\b(peppers?|cucumbers?|zucchini|courgettes?|cauliflower|cabbage|celery|mushrooms?|asparagus)\b",
    r"\b(peas|corn|eggplants?|aubergines?|beets?|beetroot|squash|pumpkins?|radish(es)?|leeks?|brussels sprouts)\b",
    # grains
    r"\b(rice|oats|oatmeal|quinoa|barley|buckwheat|millet|bulgur|couscous|wheat|rye|spelt|farro)\b",
    # dairy basics
    r"\b(milk|yogh?urt|cheddar|mozzarella|parmesan|feta|cottage cheese|ricotta|butter|(sour|heavy|whipping) cream)\b",
    # nuts and seeds
    r"\b(almonds?|walnuts?|cashews?|peanuts?|pistachios?|pecans?|hazelnuts?|macadamias?|brazil nuts?)\b",
    r"\b(chia|flax ?seeds?|linseeds?|sunflower seeds?|pumpkin seeds?|sesame( seeds?)?|hemp seeds?)\b",
    # cooking state
    r"\b(raw|boiled|baked|grilled|roasted|steamed|poached|scrambled|fried|sauteed|sautéed|fresh|cooked|braised|blanched)\b",
]

# Checked second: packaged products and the claims printed on them
BRANDED_PATTERNS = [
    # packaged snack nouns
    r"\b(chips|crisps|cookies?|biscuits?|crackers?|candy|candies|gummies|pretzels?|popcorn)\b",
    r"\b(cereal|granola bars?|protein bars?|energy bars?|snack bars?|chocolate bars?|wafers?)\b",
    r"\b(soda|cola|energy drinks?|sports drinks?|iced tea|smoothie drinks?|protein shakes?)\b",
    r"\b(pizza|nuggets|hot dogs?|burgers?|frozen (meal|dinner)s?|ice cream|ready meals?|noodle cups?)\b",
    r"\b(sauce|ketchup|mayo(nnaise)?|dressing|spread|jam|jelly|syrup)\b",
    # dietary claims
    r"\b(low[- ]fat|fat[- ]free|low[- ]carb|sugar[- ]free|no added sugar|gluten[- ]free|dairy[- ]free)\b",
    r"\b(keto|vegan|organic|diet|light|lite|zero|reduced[- ]sodium|high[- ]protein|plant[- ]based)\b",
    # processing state
    r"\b(instant|canned|tinned|packaged|processed|microwave(able)?|ready[- ]to[- ]eat|flavou?red|sweetened|fortified)\b",
]

KNOWN_BRANDS = [
    "nutella", "ferrero", "kinder", "coca-cola", "coca cola", "coke", "pepsi",
    "sprite", "fanta", "7up", "dr pepper", "red bull", "monster energy",
    "gatorade", "powerade", "bodyarmor", "vitaminwater", "la croix", "perrier",
    "san pellegrino", "evian", "aquafina", "snapple", "arizona", "lipton",
    "nestle", "nestlé", "nescafe", "nespresso", "starbucks", "lavazza",
    "folgers", "maxwell house", "twinings", "tetley", "pg tips", "kitkat",
    "kit kat", "snickers", "twix", "m&m", "milky way", "bounty", "skittles",
    "starburst", "hershey", "reese's", "cadbury", "lindt", "toblerone", "milka",
    "ghirardelli", "godiva", "haribo", "trolli", "jelly belly", "werther",
    "wrigley", "mentos", "tic tac", "oreo", "chips ahoy", "ritz crackers",
    "pringles", "doritos", "cheetos", "lay's", "tostitos", "fritos", "ruffles",
    "sunchips", "smartfood", "goldfish", "walkers", "hula hoops", "quavers",
    "wotsits", "calbee", "pocky", "meiji", "kellogg", "special k", "frosties",
    "froot loops", "pop-tarts", "eggo", "cheerios", "general mills", "quaker",
    "nature valley", "clif bar", "kind bar", "larabar", "rxbar", "quest bar",
    "belvita", "weetabix", "alpen", "kashi", "nature's path", "bob's red mill",
    "premier protein", "fairlife", "muscle milk", "optimum nutrition",
    "myprotein", "ensure", "slimfast", "huel", "danone", "activia", "actimel",
    "yakult", "oikos", "chobani", "yoplait", "fage", "siggi", "müller",
    "muller", "alpro", "oatly", "almond breeze", "vita coco", "babybel",
    "laughing cow", "boursin", "philadelphia", "velveeta", "kraft",
    "lurpak", "kerrygold", "land o lakes", "heinz", "hellmann", "knorr",
    "maggi", "campbell", "progresso", "old el paso", "barilla", "de cecco",
    "uncle ben", "ben's original", "kikkoman", "lee kum kee", "tabasco",
    "frank's redhot", "hidden valley", "nissin", "cup noodles", "maruchan",
    "indomie", "shin ramyun", "nongshim", "samyang", "ben & jerry",
    "haagen-dazs", "häagen-dazs", "magnum", "breyers", "talenti",
    "lean cuisine", "healthy choice", "stouffer", "hot pockets", "tyson",
    "oscar mayer", "hormel", "spam", "jimmy dean", "birds eye", "green giant",
    "del monte", "dole", "chiquita", "tropicana", "minute maid", "ocean spray",
    "welch's", "smucker", "jif", "skippy", "peter pan", "planters",
    "blue diamond", "wonder bread", "hovis", "warburtons", "dave's killer bread",
    "sara lee", "pepperidge farm", "little debbie", "hostess", "twinkies",
    "mcvitie", "pillsbury", "betty crocker", "bisquick", "jell-o", "cool whip",
    "nesquik", "ovaltine", "horlicks", "milo", "coffee mate", "celsius",
    "liquid iv", "nuun", "mcdonald", "burger king", "kfc", "subway",
    "wendy's", "taco bell", "pizza hut", "domino's", "popeyes", "chick-fil-a",
    "five guys", "dunkin", "krispy kreme", "tim hortons", "panera", "nando's",
    "greggs", "pret a manger", "costa coffee", "trader joe", "kirkland",
    "great value", "tesco", "sainsbury", "waitrose", "marks & spencer",
]

_WHOLE_FOOD = [re.compile(p, re.IGNORECASE) for p in WHOLE_FOOD_PATTERNS]
_BRANDED = [re.compile(p, re.IGNORECASE) for p in BRANDED_PATTERNS]


def is_explicit_brand_search(query):
    """True when the query contains a known brand name (case-insensitive substring)."""
    q = (query or "").lower()
    return any(brand in q for brand in KNOWN_BRANDS)


def classify(query):
    """
    Classify a search query as whole food, branded product or unknown.

    Whole-food patterns are checked before branded ones and the first match
    wins, so "grilled chicken pizza" is a whole-food query. The known-brand
    check runs independently of the pattern groups.

    Args:
        query (str): Search text (already translated)

    Returns:
        QueryClassification: ``kind`` plus ``is_explicit_brand_search``

    Example:
        >>> classify("egg").kind
        <QueryKind.WHOLE_FOOD: 'WHOLE_FOOD'>
        >>> classify("Nutella").is_explicit_brand_search
        True
    """
    q = (query or "").strip()
    kind = QueryKind.UNKNOWN
    if any(p.search(q) for p in _WHOLE_FOOD):
        kind = QueryKind.WHOLE_FOOD
    elif any(p.search(q) for p in _BRANDED):
        kind = QueryKind.BRANDED
    return QueryClassification(kind=kind, is_explicit_brand_search=is_explicit_brand_search(q))
