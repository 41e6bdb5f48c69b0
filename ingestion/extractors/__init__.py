"""
SAP source extractors.

Extractors:
    ODataExtractor: OData v2 entity sets over HTTP
    TableExtractor: Tables and views through /GOOG/RFC_READ_TABLE
    OdpExtractor: ODP data sources through /GOOG/ODP_DS_EXTRACT_DATA
"""

from ingestion.extractors.odata_extractor import ODataExtractor
from ingestion.extractors.rfc_extractor import RfcExtractor
from ingestion.extractors.table_extractor import TableExtractor
from ingestion.extractors.odp_extractor import OdpExtractor

__all__ = [
    "ODataExtractor",
    "RfcExtractor",
    "TableExtractor",
    "OdpExtractor",
]
