""".NET rule catalog based on the OWASP .NET Security Cheat Sheet."""

from __future__ import annotations

import re

from owaspscanner.config import ScannerConfig
from owaspscanner.scanner.cache import FileContentCache
from owaspscanner.scanner.context import RuleContext
from owaspscanner.scanner.file_scanner import FileScanner
from owaspscanner.scanner.models import Severity
from owaspscanner.scanner.rules import RuleRegistry, SecurityRule

_I = re.IGNORECASE
_CHEAT_SHEET = "https://cheatsheetseries.owasp.org/cheatsheets/DotNet_Security_Cheat_Sheet.html"

EXTENSIONS = ("cs", "cshtml", "config", "csproj", "xml")


# ----------------------------------------------------------------------
# DOTNET-SEC-001 — HTTP security headers
# ----------------------------------------------------------------------

_HEADERS_PATTERN = re.compile(r"Response\.Headers\.Add|app\.Use\(|UseHsts\(|UseCors\(", _I)


def _check_security_headers(line: str, line_number: int, context: RuleContext) -> bool:
    return not _has_security_headers(context.content)


def _has_security_headers(content: str) -> bool:
    if any(
        marker in content
        for marker in (
            "UseSecurityHeaders",
            "app.Use(SecurityHeaders",
            "AddSecurityHeaders",
            "AddHeaderPolicies",
            "ConfigureSecurityHeaders",
        )
    ):
        return True

    if "NWebsec" in content and any(
        m in content for m in ("UseXContentTypeOptions", "UseXfo", "UseCsp")
    ):
        return True

    content_type_options = "X-Content-Type-Options" in content and "nosniff" in content
    frame_options = "X-Frame-Options" in content and (
        "DENY" in content or "SAMEORIGIN" in content
    )
    csp = "Content-Security-Policy" in content or "AddContentSecurityPolicy" in content
    return content_type_options and frame_options and csp


# ----------------------------------------------------------------------
# DOTNET-SEC-002 — input validation
# ----------------------------------------------------------------------

_INPUT_PATTERN = re.compile(
    r"Request\.|FromBody|\[Bind|\[FromQuery\]|\[FromRoute\]|\[FromForm\]|"
    r"HttpContext\.Request|controller\.Request|this\.Request|Query\[|Form\[|IFormFile",
    _I,
)
_DATA_ANNOTATIONS = re.compile(
    r"\[Required\]|\[StringLength\]|\[Range\]|\[RegularExpression\]|"
    r"\[MinLength\]|\[MaxLength\]|\[EmailAddress\]|\[Url\]|\[Phone\]|"
    r"\[CreditCard\]|\[Compare\]|\[DataType\]",
    _I,
)
_MODEL_VALIDATION = re.compile(
    r"ModelState\.IsValid|TryValidateModel|ValidateAntiForgeryToken|"
    r"\.Validate\(|Validator\.|ValidationResult|IValidator",
    _I,
)
_FLUENT_VALIDATION = re.compile(r"AbstractValidator|RuleFor\(|ValidatorFactory|IValidator", _I)
_REGEX_VALIDATION = re.compile(
    r"Regex\.IsMatch|new Regex|Match\.|Matches\.|System\.Text\.RegularExpressions", _I
)
_CUSTOM_VALIDATION = re.compile(r"Sanitize|Validate|IsValid|CheckInput|Whitelist|Filter", _I)

_VALIDATION_PATTERNS = (
    _DATA_ANNOTATIONS,
    _MODEL_VALIDATION,
    _FLUENT_VALIDATION,
    _REGEX_VALIDATION,
    _CUSTOM_VALIDATION,
)


def _check_input_validation(line: str, line_number: int, context: RuleContext) -> bool:
    if _is_comment(line):
        return False

    content = context.content
    file_validates = (
        _DATA_ANNOTATIONS.search(content)
        or _MODEL_VALIDATION.search(content)
        or _FLUENT_VALIDATION.search(content)
    )
    if file_validates and _has_global_validation(content):
        return False

    nearby = context.joined_lines_around(line_number, 10)
    return not any(p.search(nearby) for p in _VALIDATION_PATTERNS)


def _has_global_validation(content: str) -> bool:
    validation_filter = (
        "services.AddControllers(" in content and "ValidateModelStateAttribute" in content
    ) or ("options.Filters.Add" in content and "ValidateModel" in content)
    validation_middleware = "app.UseMiddleware<" in content and (
        "ValidationMiddleware" in content or "RequestValidator" in content
    )
    return validation_filter or validation_middleware


# ----------------------------------------------------------------------
# DOTNET-SEC-003 — SQL injection
# ----------------------------------------------------------------------

_SQL_PATTERN = re.compile(
    r"SqlCommand|ExecuteReader|ExecuteNonQuery|ExecuteScalar|DbCommand|"
    r"SqlDataAdapter|OleDbCommand|ExecuteSqlRaw|FromSqlRaw",
    _I,
)
_SQL_DECLARATION = re.compile(r"string\s+(?:sql|query|cmd|command)\s*=\s*", _I)
_SQL_KEYWORDS = re.compile(r"SELECT|INSERT|UPDATE|DELETE|EXEC|EXECUTE", _I)
_STRING_CONCAT = re.compile(r"\+\s*[\w.]*|string\.Format|\$\"|\$@\"|@\$\"", _I)
_SAFE_PARAMS = re.compile(
    r"Parameters\.Add|Parameters\.AddWithValue|new SqlParameter|"
    r"\bparam\w*\s*=\s*.*Parameters\.Add|CreateParameter|AddParameter",
    _I,
)
_ORM_USAGE = re.compile(
    r"\.(?:Where|FirstOrDefault|SingleOrDefault|Find|Include)\(|"
    r"DbContext|DbSet|IQueryable|EntityFramework|"
    r"\bfrom\s+\w+\s+in\s+\w+|repository\.",
    _I,
)
_DBCONTEXT_SUBCLASS = re.compile(r"class\s+\w+\s*:\s*DbContext", _I)
_RAW_SQL_LITERAL = re.compile(
    r"\".*(?:SELECT.*FROM|INSERT INTO|UPDATE.*SET|DELETE FROM).*\"", _I
)
_SQL_EXECUTE = re.compile(r"Execute(?:Reader|NonQuery|Scalar|Command|SqlRaw)", _I)
_SQL_COMMAND_CALL = re.compile(r"SqlCommand|ExecuteReader|ExecuteNonQuery|ExecuteScalar", _I)
_CONCAT_RAW_SQL = re.compile(r"(?:ExecuteSqlRaw|FromSqlRaw).*\+", _I)
_USER_INPUT_HINT = re.compile(r"\.Text|Request\.|\[.*\]|\+")
_QUERY_ASSIGNMENTS = ("string query = ", "var query = ", "string sql = ", "var sql = ")


def _check_sql_injection(line: str, line_number: int, context: RuleContext) -> bool:
    content = context.content
    if _uses_orm_only(content) and not _RAW_SQL_LITERAL.search(content):
        return False

    nearby = context.joined_lines_around(line_number, 5)
    if _SAFE_PARAMS.search(nearby):
        return False

    if _has_command_concatenation(line):
        return True

    if any(a in line for a in _QUERY_ASSIGNMENTS) and _SQL_KEYWORDS.search(line) and "+" in line:
        return True

    if (
        _SQL_DECLARATION.search(nearby)
        and _STRING_CONCAT.search(nearby)
        and (_SQL_PATTERN.search(nearby) or _SQL_KEYWORDS.search(nearby))
    ):
        return True

    if _SQL_EXECUTE.search(line) and ("+" in line or "$" in line or "string.Format" in line):
        return True

    if _SQL_COMMAND_CALL.search(line):
        wider = context.joined_lines_around(line_number, 10)
        if _SAFE_PARAMS.search(wider):
            return False
        return bool(
            _SQL_DECLARATION.search(wider)
            and _STRING_CONCAT.search(wider)
            and _USER_INPUT_HINT.search(wider)
        )

    return False


def _has_command_concatenation(line: str) -> bool:
    if "+" in line and any(
        call in line for call in ("SqlCommand", "ExecuteReader", "ExecuteNonQuery")
    ):
        return True
    return bool(_CONCAT_RAW_SQL.search(line))


def _uses_orm_only(content: str) -> bool:
    """Heavy ORM usage with at most a couple of raw command references."""
    orm_hits = sum(1 for _ in _ORM_USAGE.finditer(content))
    orm_model = "DbSet<" in content or bool(_DBCONTEXT_SUBCLASS.search(content))
    sql_hits = sum(1 for _ in _SQL_PATTERN.finditer(content))
    return (orm_hits > 3 or orm_model) and sql_hits <= 2


# ----------------------------------------------------------------------
# DOTNET-SEC-004 — cross-site scripting
# ----------------------------------------------------------------------

_XSS_PATTERN = re.compile(
    r"var\s+\w+\s*=\s*[\"']<script>[\"']\s*\+\s*\w+|"
    r"@Html\.Raw|Response\.Write|document\.write|"
    r"innerHTML\s*=|"
    r"\+\s*userInput|"
    r"Content\(.*[\"']text/html[\"'].*\+",
    _I,
)
_SAFE_ENCODING = re.compile(r"HtmlEncoder\.Encode|HttpUtility\.HtmlEncode|@Html\.Encode", _I)


def _check_xss(line: str, line_number: int, context: RuleContext) -> bool:
    return not _SAFE_ENCODING.search(context.joined_lines_around(line_number, 5))


# ----------------------------------------------------------------------
# DOTNET-SEC-005 — CSRF protection
# ----------------------------------------------------------------------

_CSRF_PATTERN = re.compile(r"\[HttpPost\]|\[HttpPut\]|\[HttpDelete\]|\[HttpPatch\]", _I)
_GLOBAL_CSRF = re.compile(
    r"options\.Filters\.Add\(new\s+AutoValidateAntiforgeryTokenAttribute\(\)\)|"
    r"services\.AddAntiforgery|"
    r"app\.UseAntiforgeryTokens|"
    r"\.RequireAntiForgeryToken",
    _I,
)
_ANTIFORGERY_MARKERS = (
    "[ValidateAntiForgeryToken]",
    "@Html.AntiForgeryToken()",
    '<input name="__RequestVerificationToken"',
)


def _check_csrf(line: str, line_number: int, context: RuleContext) -> bool:
    if _GLOBAL_CSRF.search(context.content):
        return False
    nearby = context.lines_around(line_number, 5)
    return not any(marker in text for text in nearby for marker in _ANTIFORGERY_MARKERS)


# ----------------------------------------------------------------------
# DOTNET-SEC-006 — secure configuration
# ----------------------------------------------------------------------

_CONFIG_PATTERN = re.compile(
    r"<connectionStrings|<appSettings|\"ConnectionStrings\"|secrets\.json|appsettings", _I
)
_SECRETS = re.compile(r"password|pwd|secret|key|token|apikey|connectionstring", _I)
_SECURE_STORAGE = re.compile(
    r"Azure\.KeyVault|Microsoft\.Extensions\.Configuration\.UserSecrets|"
    r"ProtectedData|DPAPI|Environment\.GetEnvironmentVariable|"
    r"EnvironmentVariableTarget|IConfiguration|\.AddEnvironmentVariables|EncryptedData",
    _I,
)
_QUOTED_ASSIGNMENT = re.compile(r"=.*\"|:.*\"")
_CONFIG_FILE_SUFFIXES = (".config", "appsettings.json", "secrets.json")
_CONFIG_SETUP_MARKERS = (
    "ConfigureAppConfiguration",
    "IConfiguration",
    "ConfigurationBuilder",
    "appsettings.json",
    "ConnectionStrings",
)


def _check_secure_configuration(line: str, line_number: int, context: RuleContext) -> bool:
    config_file = context.file_name.lower().endswith(_CONFIG_FILE_SUFFIXES)
    setup_code = any(m in line for m in _CONFIG_SETUP_MARKERS)
    if not (config_file or setup_code):
        return False
    if not _SECRETS.search(line):
        return False
    plaintext = bool(_QUOTED_ASSIGNMENT.search(line)) and line.count('"') >= 2
    return plaintext and not _SECURE_STORAGE.search(context.content)


# ----------------------------------------------------------------------
# DOTNET-SEC-007 — authentication
# ----------------------------------------------------------------------

_AUTH_PATTERN = re.compile(
    r"password|authenticate|login|signin|hash|identity|user manager|usermanager", _I
)
_AUTH_RELATED = re.compile(
    r"password.*hash|createuser|register|authenticate|identity|login|signin|"
    r"usermanager|signinmanager|generatepassword|passwordhasher|"
    r"createasync.*\(.*user.*\)|addpassword",
    _I,
)
_SECURE_HASH = re.compile(
    r"PasswordHasher|PBKDF2|Rfc2898DeriveBytes|Argon2|BCrypt|HashPassword|"
    r"Microsoft\.AspNetCore\.Identity",
    _I,
)
_WEAK_HASH = re.compile(
    r"MD5|SHA1|GetBytes\(|Convert\.ToBase64String|System\.Security\.Cryptography\.SHA1", _I
)
_PASSWORD_POLICY = re.compile(
    r"RequiredLength|RequireDigit|RequireUppercase|RequireLowercase|"
    r"RequireNonAlphanumeric|PasswordOptions|RequiredUniqueChars|"
    r"PasswordValidator|PasswordSignInAsync",
    _I,
)
_ASPNET_IDENTITY_MARKERS = (
    "Microsoft.AspNetCore.Identity",
    "AddIdentity",
    "UserManager<",
    "SignInManager<",
)


def _check_authentication(line: str, line_number: int, context: RuleContext) -> bool:
    if not _AUTH_RELATED.search(line):
        return False

    content = context.content
    weak_hashing = bool(_WEAK_HASH.search(content))
    if any(m in content for m in _ASPNET_IDENTITY_MARKERS):
        # Identity handles hashing; only explicit weak hashing is a problem.
        return weak_hashing

    secure_hashing = bool(_SECURE_HASH.search(content))
    password_policy = bool(_PASSWORD_POLICY.search(content))
    return weak_hashing or not secure_hashing or not password_policy


# ----------------------------------------------------------------------
# DOTNET-SEC-008 — session management
# ----------------------------------------------------------------------

_SESSION_PATTERN = re.compile(r"Session|Cookie|HttpOnly|SameSite|CookieOptions|UseCookiePolicy", _I)
_SESSION_RELATED = re.compile(
    r"\.Session|Cookie|HttpOnly|SameSite|CookieOptions|UseCookiePolicy|AddSession|"
    r"services\.Configure<CookiePolicyOptions>",
    _I,
)
_SESSION_USAGE = re.compile(r"\.Session|Cookie", _I)
_SECURE_COOKIE = re.compile(
    r"HttpOnly\s*=\s*true|Secure\s*=\s*true|SameSite\s*=\s*(?:Strict|Lax)|"
    r"\.RequireHttps|CookieSecure\.Always|CookieHttpOnly\.Always",
    _I,
)
_SESSION_TIMEOUT = re.compile(
    r"ExpireTimeSpan|SlidingExpiration|Cookie\.MaxAge|SessionOptions\.IdleTimeout|"
    r"TimeSpan\.FromMinutes",
    _I,
)
_GLOBAL_COOKIE_POLICY_MARKERS = (
    "services.Configure<CookiePolicyOptions>",
    "app.UseCookiePolicy",
    "services.AddSession",
)


def _check_session_management(line: str, line_number: int, context: RuleContext) -> bool:
    if not _SESSION_RELATED.search(line):
        return False

    content = context.content
    if any(m in content for m in _GLOBAL_COOKIE_POLICY_MARKERS):
        return False

    if _SESSION_USAGE.search(line):
        return not (_SECURE_COOKIE.search(content) and _SESSION_TIMEOUT.search(content))
    return False


# ----------------------------------------------------------------------
# DOTNET-SEC-009 — exception handling
# ----------------------------------------------------------------------

_EXCEPTION_PATTERN = re.compile(r"try|catch|exception|throw|IExceptionHandler|UseExceptionHandler", _I)
_CATCH_CLAUSE = re.compile(r"catch.*\(.*Exception.*\)", _I)
_EXPOSES_DETAILS = re.compile(
    r"Response\.Write\(.*ex|return ex|\.Message|ToString\(\)|InnerException|StackTrace", _I
)
_SAFE_HANDLING = re.compile(
    r"UseExceptionHandler|IExceptionHandler|app\.UseStatusCodePages|CustomErrors|"
    r"UseMiddleware<ExceptionMiddleware>|ILogger|_logger",
    _I,
)
_CATCH_LOOKAHEAD = 10


def _check_exception_handling(line: str, line_number: int, context: RuleContext) -> bool:
    content = context.content
    if "AddExceptionHandler" in content or "<customErrors mode=" in content:
        return False
    if _SAFE_HANDLING.search(content):
        return False

    if not _CATCH_CLAUSE.search(line):
        return False
    return any(_EXPOSES_DETAILS.search(text) for text in _catch_block(context, line_number))


def _catch_block(context: RuleContext, line_number: int) -> list[str]:
    """Lines following a catch clause, up to its closing brace (10 lines max)."""
    lines = context.lines
    stop = min(line_number + _CATCH_LOOKAHEAD, len(lines))
    end = line_number + _CATCH_LOOKAHEAD
    depth = 0
    opened = False

    # line_number is 1-based, so it indexes the line after the catch clause.
    for i in range(line_number, stop):
        text = lines[i]
        if not opened:
            if "{" in text:
                opened = True
                depth = 1
            continue
        depth += text.count("{") - text.count("}")
        if depth == 0:
            end = i
            break

    return list(lines[line_number : min(end + 1, len(lines))])


def _is_comment(line: str) -> bool:
    return line.strip().startswith(("//", "/*", "*"))


DOTNET_RULES: list[SecurityRule] = [
    SecurityRule(
        id="DOTNET-SEC-001",
        description="Missing HTTP Security Headers",
        severity=Severity.HIGH,
        remediation=(
            "Add appropriate security headers to HTTP responses. Consider using middleware or "
            "filters to apply headers consistently across your application. Required headers "
            "include X-Content-Type-Options, X-Frame-Options, and Content-Security-Policy."
        ),
        reference=f"{_CHEAT_SHEET}#http-security-headers",
        pattern=_HEADERS_PATTERN,
        check=_check_security_headers,
    ),
    SecurityRule(
        id="DOTNET-SEC-002",
        description="Insufficient Input Validation",
        severity=Severity.CRITICAL,
        remediation=(
            "Implement proper input validation using Data Annotations, FluentValidation, or "
            "custom validators. Apply whitelist validation and check ModelState.IsValid before "
            "processing user input."
        ),
        reference=f"{_CHEAT_SHEET}#validation",
        pattern=_INPUT_PATTERN,
        check=_check_input_validation,
    ),
    SecurityRule(
        id="DOTNET-SEC-003",
        description="Potential SQL Injection vulnerability",
        severity=Severity.CRITICAL,
        remediation=(
            "Use parameterized queries, ORMs, or stored procedures instead of string "
            "concatenation. For Entity Framework, use LINQ queries. With ADO.NET, always use "
            "SqlParameter objects."
        ),
        reference=f"{_CHEAT_SHEET}#sql-injection",
        pattern=_SQL_PATTERN,
        check=_check_sql_injection,
    ),
    SecurityRule(
        id="DOTNET-SEC-004",
        description="Potential Cross-Site Scripting (XSS) vulnerability",
        severity=Severity.HIGH,
        remediation=(
            "Use built-in HtmlEncoder or AntiXssEncoder, set correct Content-Type and charset. "
            "Avoid using @Html.Raw for user input and prefer @Html.Encode or automatic encoding "
            "of Razor views."
        ),
        reference=f"{_CHEAT_SHEET}#xss-prevention",
        pattern=_XSS_PATTERN,
        check=_check_xss,
    ),
    SecurityRule(
        id="DOTNET-SEC-005",
        description="Missing CSRF protection",
        severity=Severity.HIGH,
        remediation=(
            "Add [ValidateAntiForgeryToken] attribute to controller actions that modify state "
            "or use global filters with "
            "options.Filters.Add(new AutoValidateAntiforgeryTokenAttribute())."
        ),
        reference=f"{_CHEAT_SHEET}#csrf",
        pattern=_CSRF_PATTERN,
        check=_check_csrf,
    ),
    SecurityRule(
        id="DOTNET-SEC-006",
        description="Insecure configuration settings",
        severity=Severity.MEDIUM,
        remediation=(
            "Use secure configuration storage like Azure Key Vault, Secret Manager, or "
            "environment variables. Encrypt sensitive data and avoid storing secrets in config "
            "files."
        ),
        reference=f"{_CHEAT_SHEET}#data-protection-configuration-net-462",
        pattern=_CONFIG_PATTERN,
        check=_check_secure_configuration,
    ),
    SecurityRule(
        id="DOTNET-SEC-007",
        description="Insecure authentication practices",
        severity=Severity.HIGH,
        remediation=(
            "Use ASP.NET Core Identity with strong password policies. Implement secure password "
            "storage with modern hashing algorithms like PBKDF2, Argon2, or BCrypt."
        ),
        reference=f"{_CHEAT_SHEET}#authentication",
        pattern=_AUTH_PATTERN,
        check=_check_authentication,
    ),
    SecurityRule(
        id="DOTNET-SEC-008",
        description="Insecure session management",
        severity=Severity.MEDIUM,
        remediation=(
            "Configure sessions with secure settings: HttpOnly, Secure flags, and appropriate "
            "SameSite attribute. Use appropriate session timeout and consider anti-CSRF tokens."
        ),
        reference=f"{_CHEAT_SHEET}#asp-net-session-security",
        pattern=_SESSION_PATTERN,
        check=_check_session_management,
    ),
    SecurityRule(
        id="DOTNET-SEC-009",
        description="Insecure exception handling",
        severity=Severity.MEDIUM,
        remediation=(
            "Implement proper exception handling that doesn't expose sensitive information. "
            "Use custom error pages and global exception handlers instead of exposing exception "
            "details."
        ),
        reference=f"{_CHEAT_SHEET}#exception-handling",
        pattern=_EXCEPTION_PATTERN,
        check=_check_exception_handling,
    ),
]


def dotnet_registry() -> RuleRegistry:
    """A fresh registry holding every .NET rule."""
    return RuleRegistry(DOTNET_RULES)


def create_dotnet_scanner(
    registry: RuleRegistry | None = None,
    config: ScannerConfig | None = None,
    cache: FileContentCache | None = None,
) -> FileScanner:
    return FileScanner(
        name="OWASP .NET Security Scanner",
        technology="DotNet",
        extensions=EXTENSIONS,
        rules=registry if registry is not None else dotnet_registry(),
        config=config,
        cache=cache,
    )
