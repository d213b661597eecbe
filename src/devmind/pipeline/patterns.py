"""Pattern and keyword tables driving classification, scoring and decisions.

Every table is ordered data: iteration order is registration order, and
several tie-breaks depend on it. Patterns cover English and Chinese input.
Edit the tables, not the algorithms, to tune behaviour.
"""

from __future__ import annotations

import re

_I = re.IGNORECASE


def _compile(*patterns: str, flags: int = _I) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


# =============================================================================
# Content classifier
# =============================================================================

TYPE_MATCH_SCORE = 0.3
CODE_LIKE_BONUS = 0.2
METADATA_CHANGE_TYPE_BONUS = 0.8

TYPE_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "code_create": _compile(
        r"\b(new|create|add)\s+(function|class|component|module)\b",
        r"\bcreate\s+(\w+)\s+(file|component|module)\b",
        r"新增|创建|新建|添加",
    ),
    "code_modify": _compile(
        r"\b(update|modify|change|refactor)\s+(code|function|class)\b",
        r"\bmodify|change|update|编辑|修改",
        r"\bperformance|optimiz",
    ),
    "code_delete": _compile(
        r"\b(remove|delete|deprecated)\s+(code|function|class)\b",
        r"删除|移除|废弃",
        r"TODO:\s*remove",
    ),
    "code_refactor": _compile(
        r"\b(refactor|restructure)\b",
        r"\brefactor|重构|优化结构",
        r"\bimprove\s+(code|structure|performance)\b",
    ),
    "code_optimize": _compile(
        r"\boptimiz(e|ation)|performance|improve\s+speed\b",
        r"优化|性能|效率",
    ),
    "bug_fix": _compile(
        r"\b(fix|bug|error|issue|exception|debug)\b",
        r"修复|调试|错误|异常|问题",
        r"\berror|exception|bug|缺陷",
    ),
    "bug_report": _compile(
        r"\b(report|found|discover)\s+(bug|error|issue)\b",
        r"报告|发现\s+(bug|错误|问题)",
    ),
    "feature_add": _compile(
        r"\b(add|implement|build)\s+(feature|functionality)\b",
        r"添加|实现|新增\s+(功能|特性)",
        r"\bfeature\b",
    ),
    "feature_update": _compile(
        r"\b(update|enhance|improve)\s+(feature|functionality)\b",
        r"更新|增强|改进\s+(功能|特性)",
    ),
    "feature_remove": _compile(
        r"\b(remove|deprecated)\s+(feature|functionality)\b",
        r"移除|废弃\s+(功能|特性)",
    ),
    "test": _compile(
        r"\b(test|spec|testing|unit|integration|e2e)\b",
        r"测试|单元测试|集成测试",
        r"\bit\b|\bdescribe\b|\bexpect\b",
    ),
    "documentation": (
        *_compile(
            r"\b(doc|document|readme|guide|documentation)\b",
            r"文档|说明|README|指南",
        ),
        re.compile(r"#\s+\w+", _I | re.MULTILINE),
    ),
    "solution": _compile(
        r"\b(solution|resolve|fix|answer)\b",
        r"解决方案|解决|修复|答案",
        r"\bresolved|fixed|solved",
    ),
    "design": _compile(
        r"\b(design|architecture|pattern|structure)\b",
        r"设计|架构|模式|结构",
        r"\bUML|diagram|架构图",
    ),
    "learning": _compile(
        r"\b(learn|study|understand|explore)\b",
        r"学习|研究|理解|探索",
    ),
    "configuration": _compile(
        r"\b(config|setup|environment|deploy)\b",
        r"配置|设置|环境|部署",
        r"\.env|config|settings",
    ),
    "commit": _compile(
        r"\b(commit|git|branch|merge)\b",
        r"提交|分支|合并",
    ),
    "error": _compile(
        r"\b(fail|failed|crash|broken|cannot|unable)\b",
        r"失败|错误|崩溃|无法",
    ),
    "conversation": _compile(
        r"\b(think|consider|maybe|perhaps|hmm)\b",
        r"思考|考虑|或许|可能",
    ),
}

CODE_INDICATORS = (
    re.compile(r"\b(function|class|const|let|var|import|export)\b"),
    re.compile(r"\b(def|class|import|from)\b"),
    re.compile(r"\b(func|type|struct)\b"),
    re.compile(r"\{[\s\S]*\}"),
    re.compile(r"\("),
    re.compile(r"=>"),
)

METADATA_CHANGE_TYPE_MAP = {
    "add": "code_create",
    "modify": "code_modify",
    "delete": "code_delete",
    "refactor": "code_refactor",
    "rename": "code_modify",
}

CHANGE_TYPE_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "add": _compile(r"\b(add|create|new|insert)\b", r"添加|新增|创建"),
    "modify": _compile(r"\b(update|modify|change|edit)\b", r"修改|更新|编辑"),
    "delete": _compile(r"\b(remove|delete|drop)\b", r"删除|移除"),
    "refactor": _compile(r"\b(refactor|restructure)\b", r"重构|重组"),
    "rename": _compile(r"\b(rename|move)\b", r"重命名|移动"),
}

IMPACT_LEVEL_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "breaking": _compile(r"\b(breaking|major|deprecate|remove\s+support)\b", r"破坏性|重大|废弃"),
    "major": _compile(r"\b(major|significant|important|enhance)\b", r"重要|重大|显著"),
    "minor": _compile(r"\b(minor|small|tweak)\b", r"轻微|小改动"),
    "patch": _compile(r"\b(patch|bugfix|hotfix)\b", r"补丁|修复"),
}

DEFAULT_IMPACT: dict[str, str] = {
    "code_delete": "major",
    "code_refactor": "major",
    "feature_add": "major",
    "feature_remove": "major",
    "design": "major",
    "bug_fix": "patch",
}
DEFAULT_IMPACT_FALLBACK = "minor"

FORCE_REMEMBER_PATTERNS = (
    *_compile(
        r"\b(remember|save|记住|保存)\b",
        r"\b(important|critical|key|essential|核心|关键|重要)\b",
        r"\b(note|todo|fixme)\b",
        r"#\s*IMPORTANT",
    ),
    re.compile(r"⚠️|🚨|⭐"),
)

HIGH_VALUE_PATTERNS = _compile(
    r"\b(important|critical|key|核心|关键)\b",
    r"\b(architecture|design|pattern)\b",
    r"\b(security|auth|permission)\b",
    r"\b(api|endpoint|interface)\b",
    r"\b(database|schema|model)\b",
)

SILENT_TIER_TYPES = frozenset(
    {
        "bug_fix",
        "bug_report",
        "feature_add",
        "feature_update",
        "feature_remove",
        "code_create",
        "code_modify",
        "code_delete",
        "code_refactor",
        "code_optimize",
        "test",
        "commit",
        "configuration",
    }
)
NOTIFY_TIER_TYPES = frozenset({"solution", "design", "documentation", "learning"})
NONE_TIER_TYPES = frozenset({"conversation", "error"})


# =============================================================================
# Process detector
# =============================================================================

KEYWORD_SCORE = 10
PATTERN_SCORE = 15
HISTORY_WINDOW = 10

PROCESS_KEYWORDS: dict[str, tuple[str, ...]] = {
    "code_change": (
        "implement", "refactor", "optimize", "algorithm", "function", "class", "method",
        "实现", "优化", "算法", "函数", "类", "方法",
    ),
    "feature_add": (
        "add", "create", "new", "implement", "build", "develop", "introduce",
        "添加", "新增", "创建", "构建", "引入",
        "new page", "new component", "new feature", "new functionality",
        "新页面", "新组件", "新功能",
    ),
    "bug_fix": (
        "fix bug", "bug fix", "error", "issue", "resolve", "patch", "debug", "exception", "crash",
        "修复错误", "修复bug", "错误", "问题", "解决", "调试", "异常", "崩溃",
    ),
    "solution_design": (
        "design", "architecture", "pattern", "strategy", "approach", "solution", "plan", "structure",
        "设计", "架构", "模式", "策略", "方案", "计划", "结构",
    ),
    "testing": (
        "test", "unit", "integration", "e2e", "spec", "assertion", "mock",
        "测试", "单元", "集成", "断言", "模拟",
    ),
    "documentation": (
        "document", "readme", "comment", "doc", "guide", "tutorial",
        "文档", "说明", "注释", "指南", "教程",
    ),
    "refactor": (
        "refactor", "restructure", "reorganize", "cleanup", "improve",
        "重构", "重组", "清理", "改进",
    ),
}  # fmt: skip

PROCESS_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "code_change": (
        re.compile(r"\bfunction\s+\w+\s*\([^)]*\)\s*{"),
        re.compile(r"\bclass\s+\w+\s*{"),
        re.compile(r"\bconst\s+\w+\s*=\s*\(?[^)]*\)?\s*=>"),
        re.compile(r"\bdef\s+\w+\s*\([^)]*\)\s*:"),
        re.compile(r"\bpublic\s+\w+\s+\w+\s*\("),
    ),
    "feature_add": _compile(
        r"\bcreate\s+(new\s+)?[\w]+",
        r"\badd\s+(new\s+)?[\w]+",
        r"\bimplement\s+(new\s+)?[\w]+",
        r"\bnew\s+(page|component|feature|module|function)",
        r"\bbuild\s+(new\s+)?[\w]+",
    ),
    "bug_fix": _compile(
        r"\berror\b",
        r"\bexception\b",
        r"\bfix\s+bug\b",
        r"\bbug\s+fix\b",
        r"\bdebug\b",
        r"\bcrash\b",
    ),
    "solution_design": _compile(
        r"\bdesign\b",
        r"\barchitecture\b",
        r"\bpattern\b",
        r"\bstrategy\b",
        r"\bapproach\b",
    ),
    "testing": (
        re.compile(r"\btest\b", _I),
        re.compile(r"\bit\("),
        re.compile(r"\bdescribe\("),
        re.compile(r"\bexpect\("),
        re.compile(r"\bassert\b", _I),
    ),
    "documentation": (
        re.compile(r"/\*\*[\s\S]*?\*/"),
        re.compile(r"//.*"),
        re.compile(r"#.*"),
        re.compile(r"```[\s\S]*?```"),
    ),
    "refactor": _compile(
        r"\brefactor\b",
        r"\brestructure\b",
        r"\breorganize\b",
    ),
}

PROCESS_BOOSTS: dict[str, int] = {
    "code_change": 20,
    "feature_add": 35,
    "bug_fix": 25,
    "solution_design": 30,
    "testing": 15,
    "documentation": 10,
    "refactor": 18,
}

HISTORY_BOOSTS: dict[str, int] = {
    "code_change": 5,
    "bug_fix": 8,
    "solution_design": 6,
}

MAX_KEY_ELEMENTS = 5

FILE_REFERENCE_RE = re.compile(r"[\w-]+\.[\w]+|[\w-]+/[\w-]+\.[\w]+|[\w-]+\\[\w-]+\.[\w]+")
FUNCTION_NAME_RE = re.compile(r"function\s+(\w+)|def\s+(\w+)|const\s+(\w+)\s*=")
CLASS_NAME_RE = re.compile(r"class\s+(\w+)")


# =============================================================================
# Value scorer
# =============================================================================

ALGORITHM_KEYWORDS = (
    "algorithm", "complexity", "big o", "optimization", "performance",
    "算法", "复杂度", "优化", "性能",
)  # fmt: skip
ALGORITHM_KEYWORD_SCORE = 15

QUALITY_INDICATORS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"\b(clean code|SOLID|design pattern)\b", _I), 20),
    (re.compile(r"\b(test coverage|unit test|integration test)\b", _I), 15),
    (re.compile(r"\b(performance|scalability|efficiency)\b", _I), 18),
)

CHANGED_FILES_HEADER_RE = re.compile(r"(文件修改|修改文件|files? changed?|modified files?)[:|：]", _I)
CHANGED_FILE_ITEM_RE = re.compile(r"[-*]\s+[^\n]+\.(tsx?|jsx?|vue|py|java|go|rs|cpp|c|h)", _I)
CHANGED_FILE_TIERS: tuple[tuple[int, int], ...] = ((5, 40), (3, 25), (2, 15))
LINES_ADDED_RE = re.compile(r"(\d+)\s*(lines?|行)\s*(added?|new|新增)", _I)

COMPLEXITY_KEYWORDS = (
    "race condition", "deadlock", "memory leak", "concurrency", "distributed system",
    "microservices", "scalability", "performance bottleneck", "security vulnerability",
    "竞态条件", "死锁", "内存泄漏", "并发", "分布式", "微服务", "可扩展性", "性能瓶颈", "安全漏洞",
)  # fmt: skip
COMPLEXITY_KEYWORD_SCORE = 12

TECH_STACK_KEYWORDS = (
    "react", "vue", "angular", "node", "python", "java", "typescript", "javascript",
    "sql", "mongodb", "redis", "docker", "kubernetes", "aws", "azure", "gcp",
)  # fmt: skip
TECH_STACK_SCORE = 8

IMPACT_INDICATORS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"\b(production|critical|urgent|security)\b", _I), 25),
    (re.compile(r"\b(user|customer|business impact)\b", _I), 20),
    (re.compile(r"\b(system|infrastructure|database)\b", _I), 15),
)

INNOVATION_KEYWORDS = (
    "novel", "innovative", "creative", "unique", "new approach", "创新", "新颖", "独特", "新方法",
)  # fmt: skip
GENERICITY_KEYWORDS = (
    "generic", "reusable", "extensible", "flexible", "通用", "可复用", "可扩展", "灵活",
)  # fmt: skip
COMPLETENESS_KEYWORDS = (
    "complete", "comprehensive", "thorough", "detailed", "完整", "全面", "详细",
)  # fmt: skip
UX_KEYWORDS = (
    "user experience", "ux", "usability", "accessibility", "user interface", "ui improvement",
    "interaction", "responsive", "用户体验", "可用性", "交互", "界面优化", "响应式",
)  # fmt: skip
I18N_KEYWORDS = (
    "internationalization", "i18n", "localization", "l10n", "translation", "multilingual",
    "locale", "language support", "国际化", "本地化", "多语言", "翻译",
)  # fmt: skip

SOLUTION_KEYWORD_GROUPS: tuple[tuple[tuple[str, ...], int], ...] = (
    (INNOVATION_KEYWORDS, 15),
    (GENERICITY_KEYWORDS, 12),
    (COMPLETENESS_KEYWORDS, 10),
    (UX_KEYWORDS, 18),
    (I18N_KEYWORDS, 20),
)

ABSTRACTION_KEYWORDS = ("abstract", "interface", "generic", "template", "抽象", "接口", "泛型", "模板")
ABSTRACTION_SCORE = 15
DOC_MARKERS = ("/**", "///", "```")
DOC_MARKER_SCORE = 20
VERSATILITY_KEYWORDS = ("versatile", "flexible", "adaptable", "configurable", "多用途", "灵活", "可配置")
VERSATILITY_SCORE = 12
EXAMPLE_MARKERS = ("```", "example")
EXAMPLE_SCORE = 15

REUSABLE_PATTERN_MIN_SIGNALS = 2
REUSABLE_PATTERNS: tuple[tuple[str, tuple[str, ...], re.Pattern[str] | None, int], ...] = (
    ("hash_router", ("hashrouter", "anchor", "scrollintoview", "preventdefault"), None, 20),
    ("i18n", ("uselanguage", "i18n", "translation", "locale"), None, 20),
    ("error_boundary", ("errorboundary", "componentdidcatch", "fallback"), None, 25),
    ("custom_hook", ("hook", "useeffect", "usestate"), re.compile(r"use[A-Z]\w+"), 20),
    ("state_management", ("redux", "context", "provider", "store"), None, 18),
)

PROCESS_MULTIPLIERS: dict[str, dict[str, float]] = {
    "code_significance": {"code_change": 1.2, "refactor": 1.2},
    "problem_complexity": {"bug_fix": 1.3, "feature_add": 1.2},
    "solution_importance": {"solution_design": 1.4, "feature_add": 1.2},
}
FEATURE_ADD_CODE_FLOOR = 30


# =============================================================================
# Decision engine
# =============================================================================

FEATURE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "rare_issue": ("rare", "unusual", "edge case", "罕见", "特殊情况"),
    "high_reusability": ("reusable", "generic", "utility", "helper", "可复用", "通用"),
    "has_algorithm": ("algorithm", "complexity", "算法", "复杂度"),
    "has_architecture": ("architecture", "design pattern", "架构", "设计模式"),
    "has_performance": ("performance", "optimization", "性能", "优化"),
    "has_security": ("security", "vulnerability", "安全", "漏洞"),
}

PROCESS_TO_MEMORY_TYPE: dict[str, str] = {
    "feature_add": "feature_add",
    "code_change": "code_modify",
    "bug_fix": "bug_fix",
    "solution_design": "solution",
    "testing": "test",
    "documentation": "documentation",
    "refactor": "code_refactor",
}
DEFAULT_MEMORY_TYPE = "conversation"

KEYWORD_TAGS: tuple[tuple[str, str], ...] = (
    ("algorithm", "algorithm"),
    ("performance", "performance"),
    ("security", "security"),
    ("optimization", "optimization"),
    ("refactor", "refactoring"),
    ("architecture", "architecture"),
    ("design pattern", "design-pattern"),
    ("memory leak", "memory-leak"),
    ("concurrency", "concurrency"),
    ("database", "database"),
    ("api", "api"),
    ("test", "testing"),
    ("i18n", "i18n"),
    ("internationalization", "i18n"),
    ("ux", "ux"),
    ("user experience", "ux"),
)


# =============================================================================
# Reference extraction
# =============================================================================

ISSUE_CLOSING_RE = re.compile(r"(?:fix(?:es)?|close(?:s)?|resolve(?:s)?)\s+#(\d+)", _I)
PR_REFERENCE_RE = re.compile(r"pr\s+#(\d+)", _I)
BARE_REFERENCE_RE = re.compile(r"#(\d+)")
MAX_BARE_REFERENCES = 5
GITHUB_ISSUE_URL_RE = re.compile(r"github\.com/[^/\s]+/[^/\s]+/issues/(\d+)", _I)
GITHUB_PULL_URL_RE = re.compile(r"github\.com/[^/\s]+/[^/\s]+/pull/(\d+)", _I)
