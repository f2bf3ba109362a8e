from __future__ import annotations

import json

from models import Business, OutreachOptions, OutreachSection, StyleOptions, WebsiteFilter

MAX_MARKUP_CHARS = 50_000

REGIONS_PROMPT = """\
List the top 15 administrative regions, states, or counties in {country}.
Return ONLY a raw JSON array of strings.
Example: ["California", "Texas", "New York"]
DO NOT return objects.
"""

_FILTER_HINTS = {
    WebsiteFilter.NO_WEBSITE: "Only include businesses that have NO website at all.",
    WebsiteFilter.POOR_WEBSITE: (
        "Focus on businesses that have NO website or a very basic, outdated "
        "digital presence."
    ),
    WebsiteFilter.ANY: "Website presence does not matter.",
}

DISCOVERY_PROMPT = """\
Find {limit} {category} businesses in {location} that have a rating of at least {min_rating}.
{filter_hint}

Return the data as a JSON array of objects with these exact keys:
- id (generate a random string)
- name
- address
- rating (number)
- review_count (number)
- website_status (enum: "NONE", "POOR", "GOOD", "UNKNOWN")
- website (the current website URL, empty string if none)
- phone (string, empty if unknown)
- description (short summary, string)

Strictly return JSON only.
"""

ENRICHMENT_PROMPT = """\
Perform an extensive investigative research on the business "{name}" located at "{address}".

Use web search to find every available detail. Dig into directories, social media and reviews.

Look for:
1. Contact info: specific email addresses and phone numbers.
2. Social footprint: URLs for Facebook, Instagram, LinkedIn, X/Twitter, TikTok.
3. Services: a detailed, granular list of the services or products they offer.
4. Media: links to high-quality images of their work, team or storefront.
5. Background: year established, owner/founder, business hours.
6. Reputation: what customers love and what they complain about.

Return a STRICT JSON object with this exact schema (no markdown, no conversation):
{{
  "enriched_data": {{
    "social_links": ["url1", "url2"],
    "emails": ["email1"],
    "phones": ["phone1"],
    "services": ["service1", "service2"],
    "media_assets": ["url1"],
    "extra_details": "A summary paragraph covering history, reputation, owner info and key findings."
  }}
}}
"""

BLUEPRINT_PROMPT = """\
You are generating a full professional MULTI-PAGE business website blueprint.
Output a structured, detailed plan that can be used to build a complete multi-page digital presence.

IMPORTANT RULES
* Create a multi-page website structure with distinct pages: Home, About, Services, Contact.
* Design must look modern, clean, premium and conversion-focused.
* Generate realistic, business-specific content. No placeholders except where necessary.

1. BRANDING & STYLE: primary, secondary and accent colors, typography pairing, logo description, brand vibe.
2. SITEMAP: the content of each page.
   A. Home: hero (headline, subhead, primary CTA), services summary, trust signals, CTA banner.
   B. About: story, mission, team, values.
   C. Services: detailed breakdown using the researched data, pricing if applicable, benefits, FAQ.
   D. Contact: form fields, map placeholder, address, phone, email, opening hours.
3. UI/UX: navigation linking all four pages, mobile responsiveness, consistent footer.
4. CONTENT: 3-5 realistic testimonials and a compelling "Why choose us" argument.

BUSINESS CONTEXT
Name: {name}
Address: {address}
Category: {description}

RESEARCHED DATA TO INCORPORATE
{research}

Deliver everything as clean, well-organized Markdown that clearly separates the content for each page.
"""

REVISE_BLUEPRINT_PROMPT = """\
Act as a creative director. Update the following website blueprint based on this feedback: "{feedback}".

Current blueprint:
{current}

Return the fully updated blueprint in Markdown. Do not include introductory text, just the blueprint.
"""

SITE_MARKUP_PROMPT = """\
You are an expert frontend developer.
Create a high-converting, multi-page website for "{name}" based on this approved blueprint:

"{blueprint}"

DESIGN PARAMETERS
- STYLE: {design_style} (adhere strictly to this aesthetic)
- TYPE: {website_type} (optimize the layout for this use case)

TECHNICAL REQUIREMENTS
1. Build a SINGLE index.html file that behaves like a multi-page website.
2. Use vanilla JavaScript to show/hide <section> elements from the navigation menu.
3. Fixed navigation (Home, About, Services, Contact); sections with ids #home, #about, #services, #contact; Home visible on load.
4. HTML5 and Tailwind CSS via CDN only. Icons from Font Awesome via CDN.
5. Images: use https://image.pollinations.ai/prompt/{{description}}?nologo=true with a URL-encoded description relevant to the business.

Return ONLY the raw HTML code, starting with <!DOCTYPE html>, with the navigation script at the bottom.
"""

REVISE_MARKUP_PROMPT = """\
You are an expert frontend developer.
You MUST modify the provided HTML/Tailwind code to strictly implement the following fixes.

INSTRUCTIONS FOR FIXES:
"{instructions}"

RULES:
1. Apply concrete code changes that address every instruction.
2. Return the FULL updated HTML file, not snippets.
3. Keep the design consistency and the single-file navigation logic intact.
4. Do not wrap the result in markdown fences. Return raw code only.

CURRENT CODE:
{markup}
"""

CRITIQUE_SYSTEM_PROMPT = """\
You are a senior UI/UX design auditor and frontend rendering expert.

Evaluate the website you are given on visual hierarchy, typography, color and contrast,
spacing and alignment, component consistency, mobile responsiveness and
conversion-focused UX (CTAs, trust signals, layout logic).
Identify specific, concrete issues and give actionable improvements.

Return a single JSON object with this structure:
{
  "visual_design_score": number (0-100),
  "usability_score": number (0-100),
  "conversion_score": number (0-100),
  "strengths": [string],
  "issues": [string],
  "recommendations": [string],
  "critique": [{"point": string, "box_2d": [ymin, xmin, ymax, xmax], "related_code_snippet": string}],
  "is_approved": boolean (true if the site is ready to show to the client)
}

box_2d is the bounding box of the issue on a 0-100 scale; use [0,0,0,0] for general points.
Output only valid JSON.
"""

CRITIQUE_MARKUP_PROMPT = """\
Analyze this website code for {url}. Mentally render every page (Home, About, Services, Contact).
For each critique point, related_code_snippet must be the EXACT unique substring of the code
that relates to the issue, or an empty string if not applicable.

CODE START:
{markup}
CODE END.
"""

CRITIQUE_SCREENSHOT_PROMPT = """\
Analyze this website screenshot for design quality, user experience and conversion potential.
Target URL: {url}
related_code_snippet is not applicable here; use an empty string.
"""

OUTREACH_PROMPT = """\
You are a top-tier sales copywriter.
Write a complete outreach campaign for {name}.
We just built them a mockup website at: {website_url}
Details: {details}

{calendar_hint}

Generate a JSON object with these EXACT keys:
- cold_email: {{ "subject": string, "body": string }} (the initial outreach)
- whatsapp: string (the initial short message)
- call_script: string (the initial cold call script)
- follow_ups: array of 2 objects {{ "subject": string, "body": string, "delay": string }}
  * 1st follow-up: value proposition reminder
  * 2nd follow-up: final break-up email
- objections: array of 3 objects {{ "objection": string, "response": string }}
  * common objections to web design services and how to counter them using the new website
"""

CALENDAR_HINT = (
    "Include a placeholder [CALENDAR_LINK] for booking a follow-up call in both "
    "the email and the WhatsApp message."
)

REVISE_OUTREACH_PROMPT = """\
Refine the following {section_label} based on this feedback: "{feedback}".

Business: {name}
Current content:
{current}

{format_hint}
"""

_SECTION_LABELS = {
    OutreachSection.EMAIL: "cold email",
    OutreachSection.WHATSAPP: "WhatsApp message",
    OutreachSection.SCRIPT: "cold call script",
    OutreachSection.FOLLOW_UP: "follow-up email",
}


def regions_prompt(country: str) -> str:
    return REGIONS_PROMPT.format(country=country)


def discovery_prompt(
    category: str,
    location: str,
    min_rating: float,
    limit: int,
    website_filter: WebsiteFilter,
) -> str:
    return DISCOVERY_PROMPT.format(
        limit=limit,
        category=category,
        location=location,
        min_rating=min_rating,
        filter_hint=_FILTER_HINTS[website_filter],
    )


def enrichment_prompt(business: Business) -> str:
    return ENRICHMENT_PROMPT.format(name=business.name, address=business.address)


def blueprint_prompt(business: Business) -> str:
    research = (
        business.enriched_data.model_dump_json(indent=2)
        if business.is_enriched
        else "None available"
    )
    return BLUEPRINT_PROMPT.format(
        name=business.name,
        address=business.address,
        description=business.description or "-",
        research=research,
    )


def revise_blueprint_prompt(current: str, feedback: str) -> str:
    return REVISE_BLUEPRINT_PROMPT.format(current=current, feedback=feedback)


def site_markup_prompt(business: Business, blueprint: str, style: StyleOptions) -> str:
    return SITE_MARKUP_PROMPT.format(
        name=business.name,
        blueprint=blueprint,
        design_style=style.design_style,
        website_type=style.website_type,
    )


def revise_markup_prompt(markup: str, instructions: str) -> str:
    return REVISE_MARKUP_PROMPT.format(markup=markup, instructions=instructions)


def critique_markup_prompt(url: str, markup: str) -> str:
    return CRITIQUE_MARKUP_PROMPT.format(url=url, markup=markup[:MAX_MARKUP_CHARS])


def critique_screenshot_prompt(url: str) -> str:
    return CRITIQUE_SCREENSHOT_PROMPT.format(url=url)


def outreach_prompt(business: Business, website_url: str, options: OutreachOptions) -> str:
    details = business.enriched_data.model_dump() if business.enriched_data else {}
    return OUTREACH_PROMPT.format(
        name=business.name,
        website_url=website_url,
        details=json.dumps(details, ensure_ascii=False),
        calendar_hint=CALENDAR_HINT if options.include_calendar else "",
    )


def revise_outreach_prompt(
    business_name: str, current, feedback: str, section: OutreachSection
) -> str:
    if isinstance(current, str):
        rendered = current
        format_hint = "Return ONLY the updated text, no JSON and no commentary."
    else:
        rendered = json.dumps(current, ensure_ascii=False, indent=2)
        format_hint = "Return ONLY the updated content as a JSON object with the same keys."
    return REVISE_OUTREACH_PROMPT.format(
        section_label=_SECTION_LABELS[section],
        feedback=feedback,
        name=business_name,
        current=rendered,
        format_hint=format_hint,
    )


def review_fix_instructions(critique_points: list[str], recommendations: list[str]) -> str:
    """Build the revision instructions for the automatic fix loop."""
    lines = ["CRITICAL ISSUES TO FIX:"]
    lines += [f"- {point}" for point in critique_points]
    lines += ["", "RECOMMENDED IMPROVEMENTS:"]
    lines += [f"- {rec}" for rec in recommendations]
    lines += ["", "Apply these changes to the code immediately."]
    return "\n".join(lines)
