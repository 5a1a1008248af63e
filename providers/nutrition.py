# providers/nutrition.py
KJ_PER_KCAL = 4.184


def to_number(value):
    """Coerce an upstream nutrient value to float, returning None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return None


def non_negative(value):
    n = to_number(value)
    if n is None or n < 0:
        return 0.0
    return n


def kj_to_kcal(kj):
    return round(kj / KJ_PER_KCAL)


def resolve_energy(values, kcal_keys, kj_keys):
    """
    Resolve calories per 100 g from a provider-specific set of energy fields.

    Keys are tried in order: every kcal key first, then every kJ key. The
    first non-zero value wins; kJ values are converted with
    ``kcal = round(kJ / 4.184)``.

    Args:
        values (Mapping): Field name -> raw value for one upstream record
        kcal_keys (Sequence[str]): kcal fields, per-100g first, then
            per-serving or alternate kcal fields
        kj_keys (Sequence[str]): kJ fields, per-100g first, then per-serving
            or generic energy fields assumed to be kJ

    Returns:
        float: Energy in kcal per 100 g, or 0 when nothing usable is present

    Example:
        >>> resolve_energy({"energy-kj_100g": 418.4}, ["energy-kcal_100g"], ["energy-kj_100g"])
        100
    """
    for key in kcal_keys:
        n = to_number(values.get(key))
        if n is not None and n > 0:
            return n
    for key in kj_keys:
        n = to_number(values.get(key))
        if n is not None and n > 0:
            return kj_to_kcal(n)
    return 0


def has_complete_nutrition(product):
    return (
        product.calories_per_100g > 0
        and product.protein_per_100g >= 0
        and product.carbs_per_100g >= 0
        and product.fat_per_100g >= 0
    )


def quality_score(product):
    """
    Completeness rating of a normalized product, 0 to 100.

    Informational only, never used to filter records.

    Scoring:
        - name present (longer than 2 characters): 10
        - calories > 0: 20
        - protein, carbs, fat > 0: 15 each
        - fiber > 0: 10
        - image present: 15
    """
    score = 0
    if product.name and len(product.name.strip()) > 2:
        score += 10
    if product.calories_per_100g > 0:
        score += 20
    if product.protein_per_100g > 0:
        score += 15
    if product.carbs_per_100g > 0:
        score += 15
    if product.fat_per_100g > 0:
        score += 15
    if product.fiber_per_100g > 0:
        score += 10
    if product.image_url:
        score += 15
    return min(score, 100)
