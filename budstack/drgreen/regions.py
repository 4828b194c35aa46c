"""Country and currency lookup tables used by the Dr. Green catalogue."""

DEFAULT_CURRENCY = "ZAR"

CURRENCY_BY_COUNTRY: dict[str, str] = {
    "PT": "EUR",
    "ES": "EUR",
    "FR": "EUR",
    "DE": "EUR",
    "IT": "EUR",
    "NL": "EUR",
    "BE": "EUR",
    "AT": "EUR",
    "IE": "EUR",
    "GR": "EUR",
    "SA": "ZAR",
    "UK": "GBP",
    "GB": "GBP",
    "US": "USD",
    "CA": "CAD",
    "AU": "AUD",
    "NZ": "NZD",
    "CH": "CHF",
    "SE": "SEK",
    "NO": "NOK",
    "DK": "DKK",
    "PL": "PLN",
    "CZ": "CZK",
    "IL": "ILS",
    "BR": "BRL",
    "MX": "MXN",
    "AR": "ARS",
    "CL": "CLP",
    "CO": "COP",
    "TH": "THB",
    "MY": "MYR",
    "SG": "SGD",
    "IN": "INR",
    "PK": "PKR",
    "PH": "PHP",
    "ID": "IDR",
    "JP": "JPY",
    "KR": "KRW",
    "CN": "CNY",
    "HK": "HKD",
    "TW": "TWD",
}

# "SA" is used for South Africa throughout the storefronts
ALPHA3_BY_ALPHA2: dict[str, str] = {
    "PT": "PRT",
    "GB": "GBR",
    "UK": "GBR",
    "ZA": "ZAF",
    "SA": "ZAF",
    "TH": "THA",
    "US": "USA",
    "DE": "DEU",
    "FR": "FRA",
    "ES": "ESP",
    "IT": "ITA",
    "NL": "NLD",
    "BE": "BEL",
    "IE": "IRL",
    "GR": "GRC",
    "CA": "CAN",
    "AU": "AUS",
    "NZ": "NZL",
    "CH": "CHE",
    "SE": "SWE",
    "NO": "NOR",
    "DK": "DNK",
    "PL": "POL",
    "CZ": "CZE",
    "IL": "ISR",
    "BR": "BRA",
    "MX": "MEX",
    "AR": "ARG",
    "CL": "CHL",
    "CO": "COL",
    "MY": "MYS",
    "SG": "SGP",
    "IN": "IND",
    "PK": "PAK",
    "PH": "PHL",
    "ID": "IDN",
    "JP": "JPN",
    "KR": "KOR",
    "CN": "CHN",
    "HK": "HKG",
    "TW": "TWN",
}


def currency_for_country(country_code: str) -> str:
    """Default currency for a two-letter country code."""
    return CURRENCY_BY_COUNTRY.get(country_code.upper(), DEFAULT_CURRENCY)


def to_alpha3(country_code: str) -> str:
    """Convert an alpha-2 code to alpha-3; unknown codes pass through."""
    return ALPHA3_BY_ALPHA2.get(country_code.upper(), country_code)
