# Prompts for the vision model.
# - BILL_EXTRACTION_PROMPT: full bill, every page rendered as an image
# - QUICK_SCAN_PROMPT: first page only, identifiers for duplicate detection
#
# Field names in the JSON schemas are the wire names read by the validator;
# change both together.

# =============================================================================
# FULL BILL EXTRACTION
# =============================================================================
BILL_EXTRACTION_PROMPT = """Analyze this ISP/telecom bill image and extract structured data in JSON format.

IMPORTANT INSTRUCTIONS:
1. Extract ALL information accurately from the bill
2. For line items, include EVERY service/phone number listed in the bill
3. All monetary amounts should be numbers (not strings)
4. All dates should be in YYYY-MM-DD format
5. Return ONLY valid JSON - no markdown, no explanations

Required JSON structure:
{
  "accountNumber": "string - unique account/service number",
  "invoiceNumber": "string - bill invoice number",
  "billingPeriodStart": "YYYY-MM-DD",
  "billingPeriodEnd": "YYYY-MM-DD",
  "billDate": "YYYY-MM-DD",
  "dueDate": "YYYY-MM-DD or null",
  "currentCharges": number,
  "outstanding": number,
  "totalDue": number,
  "gstAmount": number,
  "discounts": number (0 if none),
  "lineItems": [
    {
      "serviceNumber": "string - phone/SIM number",
      "serviceType": "string or null - e.g. mobile, fixed line, broadband",
      "packageName": "string - subscription package name",
      "subscriptionCharge": number,
      "usageCharges": number,
      "otherCharges": number (0 if none),
      "totalCharge": number,
      "servicePeriodStart": "YYYY-MM-DD or null",
      "servicePeriodEnd": "YYYY-MM-DD or null",
      "usageDetails": {
        // Optional: voice minutes, data GB, SMS count, etc.
      }
    }
  ],
  "confidence": number (0-100, your confidence in the extraction accuracy)
}

CRITICAL:
- Extract ALL line items from the bill (every phone number/service)
- Be precise with numbers - use exact amounts from the bill
- If a field is not clearly visible, use null or 0 as appropriate
- Your confidence score should reflect extraction certainty"""

MULTI_PAGE_NOTE = "\n\nNOTE: This bill has multiple pages. Extract information from ALL pages."

# =============================================================================
# QUICK SCAN (first page only)
# =============================================================================
QUICK_SCAN_PROMPT = """Analyze ONLY the first page of this bill and extract just the invoice number and account number.

Return ONLY valid JSON - no markdown, no explanations:
{
  "invoiceNumber": "string - bill invoice number",
  "accountNumber": "string - account/service number",
  "confidence": number (0-100, your confidence in the extraction)
}

Focus only on finding these two fields. Ignore all other information."""


def build_extraction_prompt(page_count: int) -> str:
    """Full-extraction prompt, with the multi-page note when needed."""
    if page_count > 1:
        return BILL_EXTRACTION_PROMPT + MULTI_PAGE_NOTE
    return BILL_EXTRACTION_PROMPT
