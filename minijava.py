#!/usr/bin/env python3
import os, sys
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Dict, Optional, Tuple, Union

from ply.lex import lex
from ply.yacc import yacc

# ============================================================
# Diagnostics
# ============================================================

@dataclass
class Source:
    path: str
    text: str
    lines: List[str]

    @staticmethod
    def from_path(path: str) -> "Source":
        with open(path, "r", encoding="utf-8") as f:
            txt = f.read()
        return Source(path=os.path.abspath(path), text=txt, lines=txt.splitlines())

    @staticmethod
    def from_text(text: str, path: str = "<input>") -> "Source":
        return Source(path=path, text=text, lines=text.splitlines())

    def line_col(self, lexpos: int) -> Tuple[int, int]:
        # compute (line, col) from absolute index
        line = self.text.count("\n", 0, lexpos) + 1
        bol = self.text.rfind("\n", 0, lexpos)
        if bol < 0: bol = -1
        col = lexpos - bol
        return line, col

@dataclass
class Diag:
    kind: str  # "error" | "note"
    msg: str
    src: Optional[Source]
    lexpos: int
    hint: Optional[str] = None

    @property
    def line_col(self) -> Tuple[int, int]:
        if self.src is None:
            return 0, 0
        return self.src.line_col(self.lexpos)

    def format(self, use_color: bool = True) -> str:
        if use_color:
            RESET, BOLD, RED, BLUE, CYAN = "\033[0m", "\033[1m", "\033[31m", "\033[34m", "\033[36m"
            kind_color = f"{BOLD}{RED}" if self.kind == "error" else f"{BOLD}{BLUE}"
            arrow_color = RED if self.kind == "error" else BLUE
        else:
            RESET = BOLD = RED = BLUE = CYAN = kind_color = arrow_color = ""

        header = f"{kind_color}{self.kind}{RESET}{BOLD}: {self.msg}{RESET}"
        if self.src is None:
            return header

        line, col = self.line_col
        code = self.src.lines[line - 1] if 1 <= line <= len(self.src.lines) else ""
        location = f"{BOLD}{BLUE}-->{RESET} {self.src.path}:{line}:{col}"

        line_num_width = len(str(line))
        line_prefix = f"{BOLD}{BLUE}{line:>{line_num_width}} |{RESET} "
        empty_prefix = f"{BOLD}{BLUE}{' ' * line_num_width} |{RESET}"

        caret = " " * (col - 1) + f"{BOLD}{arrow_color}^~~~{RESET}"

        result = f"{header}\n{location}\n{empty_prefix}\n{line_prefix}{code}\n{empty_prefix} {caret}"

        if self.hint:
            result += f"\n{empty_prefix}\n{empty_prefix} {BOLD}{CYAN}help:{RESET} {self.hint}"

        return result

class CompileAbort(Exception):
    """Stops the current compilation; only the driver catches it."""

    def __init__(self, diag: Diag):
        super().__init__(diag.msg)
        self.diag = diag

class ParseError(Exception):
    def __init__(self, msg: str, lexpos: Optional[int] = None, hint: Optional[str] = None):
        super().__init__(msg)
        self.msg = msg
        self.lexpos = lexpos
        self.hint = hint

class ErrorSink:
    def __init__(self, src: Optional[Source] = None, fail_fast: bool = False) -> None:
        self.src = src
        self.fail_fast = fail_fast
        self.errors: List[Diag] = []
        self.notes: List[Diag] = []

    def error(self, msg: str, lexpos: int = 0, hint: Optional[str] = None) -> Diag:
        diag = Diag("error", msg, self.src, lexpos, hint)
        self.errors.append(diag)
        if self.fail_fast:
            raise CompileAbort(diag)
        return diag

    def fatal(self, msg: str, lexpos: int = 0, hint: Optional[str] = None):
        diag = Diag("error", msg, self.src, lexpos, hint)
        self.errors.append(diag)
        raise CompileAbort(diag)

    def note(self, msg: str, lexpos: int = 0, hint: Optional[str] = None):
        self.notes.append(Diag("note", msg, self.src, lexpos, hint))

    def ok(self) -> bool:
        return not self.errors

    def dump(self, use_color: bool = True):
        for e in self.errors:
            print(e.format(use_color))
            print()  # Empty line between diagnostics
        for n in self.notes:
            print(n.format(use_color))
            print()

# ============================================================
# Lexer
# ============================================================

reserved = {
    "class": "CLASS",
    "void": "VOID",
    "public": "PUBLIC",
    "private": "PRIVATE",
    "static": "STATIC",
    "int": "INT",
    "boolean": "BOOLEAN",
    "this": "THIS",
    "return": "RETURN",
    "if": "IF",
    "else": "ELSE",
    "while": "WHILE",
    "true": "TRUE",
    "false": "FALSE",
    "new": "NEW",
    "null": "NULL",
}

tokens = (
    # literals & ids
    "NUM", "ID",

    # punctuation
    "LPAREN", "RPAREN", "LBRACE", "RBRACE", "LBRACKET", "RBRACKET",
    "COMMA", "SEMICOLON", "DOT", "ASSIGN",

    # operators
    "PLUS", "MINUS", "TIMES", "DIVIDE",
    "ANDAND", "OROR", "NOT",
    "EQ", "NE", "LT", "LE", "GT", "GE",

    # keywords
    "CLASS", "VOID", "PUBLIC", "PRIVATE", "STATIC", "INT", "BOOLEAN",
    "THIS", "RETURN", "IF", "ELSE", "WHILE", "TRUE", "FALSE", "NEW", "NULL",
)

t_ignore = " \t\r"

def t_newline(t):
    r'\n+'
    t.lexer.lineno += len(t.value)

def t_line_comment(t):
    r'//[^\n]*'
    pass

def t_block_comment(t):
    r'/\*(.|\n)*?\*/'
    t.lexer.lineno += t.value.count("\n")

def t_unterminated_comment(t):
    r'/\*'
    raise ParseError("comment ran off the end of the source file", t.lexpos)

# Multi-character operators (must come before single-char)
def t_ANDAND(t):
    r'&&'
    return t

def t_OROR(t):
    r'\|\|'
    return t

def t_EQ(t):
    r'=='
    return t

def t_NE(t):
    r'!='
    return t

def t_LE(t):
    r'<='
    return t

def t_GE(t):
    r'>='
    return t

# Single-character tokens
t_LPAREN   = r"\("
t_RPAREN   = r"\)"
t_LBRACE   = r"\{"
t_RBRACE   = r"\}"
t_LBRACKET = r"\["
t_RBRACKET = r"\]"
t_COMMA    = r","
t_SEMICOLON= r";"
t_DOT      = r"\."
t_ASSIGN   = r"="
t_NOT      = r"!"
t_LT       = r"<"
t_GT       = r">"
t_PLUS     = r"\+"
t_MINUS    = r"-"
t_TIMES    = r"\*"
t_DIVIDE   = r"/"

def t_NUM(t):
    r'\d+'
    t.value = int(t.value)
    return t

def t_ID(t):
    r'[A-Za-z][A-Za-z0-9_]*'
    t.type = reserved.get(t.value, "ID")
    return t

def t_error(t):
    raise ParseError(f"illegal character {t.value[0]!r}", t.lexpos)

# ============================================================
# AST
# ============================================================

class TypeKind(Enum):
    INT = "int"
    BOOLEAN = "boolean"
    VOID = "void"
    NULL = "null"
    ERROR = "error"
    UNSUPPORTED = "unsupported"
    CLASS = "class"
    ARRAY = "array"

class Location(Enum):
    STATIC = "SB"      # static segment index
    INSTANCE = "OB"    # object-relative index, after the header
    FRAME = "LB"       # frame-relative: params < 0 <= linkage < locals
    CODE = "CB"        # method entry address

@dataclass(frozen=True)
class RuntimeEntity:
    where: Location
    offset: int

class AST:
    kind = "AST"

# ---- terminals

@dataclass(eq=False)
class Identifier(AST):
    spelling: str
    pos: int = 0
    decl: Optional["Declaration"] = field(default=None, init=False, repr=False)
    kind = "Identifier"

# ---- types

class TypeDenoter(AST):
    type_kind: TypeKind

@dataclass(eq=False)
class BaseType(TypeDenoter):
    type_kind: TypeKind
    pos: int = 0
    kind = "BaseType"

    def __str__(self):
        return self.type_kind.value

@dataclass(eq=False)
class ClassType(TypeDenoter):
    class_name: Identifier
    pos: int = 0
    kind = "ClassType"

    @property
    def type_kind(self) -> TypeKind:
        return TypeKind.CLASS

    @property
    def name(self) -> str:
        return self.class_name.spelling

    def __str__(self):
        return self.class_name.spelling

@dataclass(eq=False)
class ArrayType(TypeDenoter):
    elt: TypeDenoter
    pos: int = 0
    kind = "ArrayType"

    @property
    def type_kind(self) -> TypeKind:
        return TypeKind.ARRAY

    def __str__(self):
        return f"{self.elt}[]"

# ---- declarations

class Declaration(AST):
    name: str
    type: TypeDenoter
    red: Optional[RuntimeEntity]

@dataclass(eq=False)
class FieldDecl(Declaration):
    name: str
    type: TypeDenoter
    is_private: bool = False
    is_static: bool = False
    pos: int = 0
    red: Optional[RuntimeEntity] = field(default=None, init=False, repr=False)
    kind = "FieldDecl"

@dataclass(eq=False)
class ParameterDecl(Declaration):
    name: str
    type: TypeDenoter
    pos: int = 0
    red: Optional[RuntimeEntity] = field(default=None, init=False, repr=False)
    kind = "ParameterDecl"

@dataclass(eq=False)
class VarDecl(Declaration):
    name: str
    type: TypeDenoter
    pos: int = 0
    red: Optional[RuntimeEntity] = field(default=None, init=False, repr=False)
    kind = "VarDecl"

@dataclass(eq=False)
class MethodDecl(Declaration):
    name: str
    type: TypeDenoter  # return type
    is_private: bool = False
    is_static: bool = False
    params: List[ParameterDecl] = field(default_factory=list)
    body: List["Statement"] = field(default_factory=list)
    pos: int = 0
    red: Optional[RuntimeEntity] = field(default=None, init=False, repr=False)
    kind = "MethodDecl"

@dataclass(eq=False)
class ClassDecl(Declaration):
    name: str
    fields: List[FieldDecl] = field(default_factory=list)
    methods: List[MethodDecl] = field(default_factory=list)
    pos: int = 0
    type: TypeDenoter = field(default=None, init=False, repr=False)
    red: Optional[RuntimeEntity] = field(default=None, init=False, repr=False)
    # filled in by layout: index used by `new`, and instance field count
    class_id: Optional[int] = field(default=None, init=False, repr=False)
    size: Optional[int] = field(default=None, init=False, repr=False)
    kind = "ClassDecl"

    def __post_init__(self):
        self.type = class_type_of(self)

    @property
    def members(self) -> List[Union[FieldDecl, MethodDecl]]:
        return sorted(self.fields + self.methods, key=lambda m: m.pos)

def class_type_of(cd: ClassDecl, pos: int = 0) -> ClassType:
    ct = ClassType(Identifier(cd.name, pos), pos)
    ct.class_name.decl = cd
    return ct

# ---- references

class Reference(AST):
    decl: Optional[Declaration]

@dataclass(eq=False)
class ThisRef(Reference):
    pos: int = 0
    decl: Optional[Declaration] = field(default=None, init=False, repr=False)
    kind = "ThisRef"

@dataclass(eq=False)
class IdRef(Reference):
    id: Identifier
    pos: int = 0
    decl: Optional[Declaration] = field(default=None, init=False, repr=False)
    kind = "IdRef"

@dataclass(eq=False)
class QualRef(Reference):
    ref: Reference
    id: Identifier
    pos: int = 0
    decl: Optional[Declaration] = field(default=None, init=False, repr=False)
    kind = "QualRef"

# ---- expressions

class Expression(AST):
    type: Optional[TypeDenoter]

@dataclass(eq=False)
class IntLiteral(Expression):
    value: int
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "IntLiteral"

@dataclass(eq=False)
class BooleanLiteral(Expression):
    value: bool
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "BooleanLiteral"

@dataclass(eq=False)
class NullLiteral(Expression):
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "NullLiteral"

@dataclass(eq=False)
class UnaryExpr(Expression):
    op: str
    expr: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "UnaryExpr"

@dataclass(eq=False)
class BinaryExpr(Expression):
    op: str
    left: Expression
    right: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "BinaryExpr"

@dataclass(eq=False)
class RefExpr(Expression):
    ref: Reference
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "RefExpr"

@dataclass(eq=False)
class IxExpr(Expression):
    ref: Reference
    index: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "IxExpr"

@dataclass(eq=False)
class CallExpr(Expression):
    function_ref: Reference
    args: List[Expression] = field(default_factory=list)
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "CallExpr"

@dataclass(eq=False)
class NewObjectExpr(Expression):
    class_type: ClassType
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "NewObjectExpr"

@dataclass(eq=False)
class NewArrayExpr(Expression):
    elt_type: TypeDenoter
    size: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "NewArrayExpr"

# ---- statements

class Statement(AST):
    type: Optional[TypeDenoter]

@dataclass(eq=False)
class BlockStmt(Statement):
    stmts: List[Statement] = field(default_factory=list)
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "BlockStmt"

@dataclass(eq=False)
class VarDeclStmt(Statement):
    var: VarDecl
    init: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "VarDeclStmt"

@dataclass(eq=False)
class AssignStmt(Statement):
    ref: Reference
    value: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "AssignStmt"

@dataclass(eq=False)
class IxAssignStmt(Statement):
    ref: Reference
    index: Expression
    value: Expression
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "IxAssignStmt"

@dataclass(eq=False)
class CallStmt(Statement):
    method_ref: Reference
    args: List[Expression] = field(default_factory=list)
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "CallStmt"

@dataclass(eq=False)
class ReturnStmt(Statement):
    expr: Optional[Expression] = None
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "ReturnStmt"

@dataclass(eq=False)
class IfStmt(Statement):
    cond: Expression
    then: Statement
    else_: Optional[Statement] = None
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "IfStmt"

@dataclass(eq=False)
class WhileStmt(Statement):
    cond: Expression
    body: Statement
    pos: int = 0
    type: Optional[TypeDenoter] = field(default=None, init=False, repr=False)
    kind = "WhileStmt"

# ---- root

@dataclass(eq=False)
class Program(AST):
    classes: List[ClassDecl] = field(default_factory=list)
    pos: int = 0
    env: Optional["Predefined"] = field(default=None, init=False, repr=False)
    kind = "Program"

# ============================================================
# Parser (PLY)
# ============================================================

# Precedence - ordered from lowest to highest
precedence = (
    ('nonassoc', 'IFX'),
    ('nonassoc', 'ELSE'),
    ('left', 'OROR'),
    ('left', 'ANDAND'),
    ('left', 'EQ', 'NE'),
    ('left', 'LT', 'LE', 'GT', 'GE'),
    ('left', 'PLUS', 'MINUS'),
    ('left', 'TIMES', 'DIVIDE'),
    ('right', 'NOT', 'UMINUS'),
)

_front_end = None

def attach_parser(src: Source):
    global _front_end
    if _front_end is None:
        _front_end = (lex(), yacc(start="program", debug=False, write_tables=False))
    base_lexer, parser = _front_end
    lexer = base_lexer.clone()
    lexer.lineno = 1
    lexer.input(src.text)
    return lexer, parser

def parse_source(src: Source) -> Program:
    lexer, parser = attach_parser(src)
    prog = parser.parse(lexer=lexer, tracking=True)
    if prog is None:
        raise ParseError("empty parse result", 0)
    return prog

# Grammar

def p_program(p):
    """program : class_list"""
    p[0] = Program(p[1], 0)

def p_class_list(p):
    """class_list : class_list class_decl
                  | empty"""
    if len(p) == 3:
        p[0] = p[1] + [p[2]]
    else:
        p[0] = []

def p_empty(p):
    """empty :"""
    pass

def p_class_decl(p):
    """class_decl : CLASS ID LBRACE member_list RBRACE"""
    members = p[4]
    fields = [m for m in members if isinstance(m, FieldDecl)]
    methods = [m for m in members if isinstance(m, MethodDecl)]
    p[0] = ClassDecl(p[2], fields, methods, p.lexpos(2))

def p_member_list(p):
    """member_list : member_list member
                   | empty"""
    if len(p) == 3:
        p[0] = p[1] + [p[2]]
    else:
        p[0] = []

def p_member_field(p):
    """member : visibility access type ID SEMICOLON"""
    p[0] = FieldDecl(p[4], p[3], is_private=p[1], is_static=p[2], pos=p.lexpos(4))

def p_member_method(p):
    """member : visibility access type ID LPAREN param_list RPAREN LBRACE stmt_list RBRACE
              | visibility access void_type ID LPAREN param_list RPAREN LBRACE stmt_list RBRACE"""
    p[0] = MethodDecl(p[4], p[3], is_private=p[1], is_static=p[2],
                      params=p[6], body=p[9], pos=p.lexpos(4))

def p_visibility(p):
    """visibility : PUBLIC
                  | PRIVATE
                  | empty"""
    p[0] = p[1] == "private"

def p_access(p):
    """access : STATIC
              | empty"""
    p[0] = p[1] == "static"

def p_void_type(p):
    """void_type : VOID"""
    p[0] = BaseType(TypeKind.VOID, p.lexpos(1))

def p_type_prim(p):
    """type : prim_type"""
    p[0] = p[1]

def p_type_class(p):
    """type : ID
            | ID LBRACKET RBRACKET"""
    ct = ClassType(Identifier(p[1], p.lexpos(1)), p.lexpos(1))
    p[0] = ct if len(p) == 2 else ArrayType(ct, p.lexpos(1))

def p_prim_type(p):
    """prim_type : INT
                 | BOOLEAN
                 | INT LBRACKET RBRACKET"""
    kind = TypeKind.INT if p[1] == "int" else TypeKind.BOOLEAN
    base = BaseType(kind, p.lexpos(1))
    p[0] = base if len(p) == 2 else ArrayType(base, p.lexpos(1))

def p_param_list(p):
    """param_list : params
                  | empty"""
    p[0] = p[1] if p[1] is not None else []

def p_params(p):
    """params : params COMMA type ID
              | type ID"""
    if len(p) == 5:
        p[0] = p[1] + [ParameterDecl(p[4], p[3], p.lexpos(4))]
    else:
        p[0] = [ParameterDecl(p[2], p[1], p.lexpos(2))]

def p_stmt_list(p):
    """stmt_list : stmt_list stmt
                 | empty"""
    if len(p) == 3:
        p[0] = p[1] + [p[2]]
    else:
        p[0] = []

def p_stmt_block(p):
    """stmt : LBRACE stmt_list RBRACE"""
    p[0] = BlockStmt(p[2], p.lexpos(1))

def p_stmt_vardecl_prim(p):
    """stmt : prim_type ID ASSIGN expr SEMICOLON"""
    p[0] = VarDeclStmt(VarDecl(p[2], p[1], p.lexpos(2)), p[4], p.lexpos(1))

def p_stmt_vardecl_class(p):
    """stmt : ID ID ASSIGN expr SEMICOLON"""
    ct = ClassType(Identifier(p[1], p.lexpos(1)), p.lexpos(1))
    p[0] = VarDeclStmt(VarDecl(p[2], ct, p.lexpos(2)), p[4], p.lexpos(1))

def p_stmt_vardecl_class_array(p):
    """stmt : ID LBRACKET RBRACKET ID ASSIGN expr SEMICOLON"""
    ct = ClassType(Identifier(p[1], p.lexpos(1)), p.lexpos(1))
    p[0] = VarDeclStmt(VarDecl(p[4], ArrayType(ct, p.lexpos(1)), p.lexpos(4)), p[6], p.lexpos(1))

def p_stmt_assign(p):
    """stmt : reference ASSIGN expr SEMICOLON"""
    p[0] = AssignStmt(p[1], p[3], p.lexpos(1))

def p_stmt_ix_assign(p):
    """stmt : ID LBRACKET expr RBRACKET ASSIGN expr SEMICOLON
            | qualified LBRACKET expr RBRACKET ASSIGN expr SEMICOLON"""
    ref = p[1]
    if isinstance(ref, str):
        ref = IdRef(Identifier(ref, p.lexpos(1)), p.lexpos(1))
    p[0] = IxAssignStmt(ref, p[3], p[6], p.lexpos(1))

def p_stmt_call(p):
    """stmt : reference LPAREN arg_list RPAREN SEMICOLON"""
    p[0] = CallStmt(p[1], p[3], p.lexpos(1))

def p_stmt_return(p):
    """stmt : RETURN SEMICOLON
            | RETURN expr SEMICOLON"""
    p[0] = ReturnStmt(p[2] if len(p) == 4 else None, p.lexpos(1))

def p_stmt_if(p):
    """stmt : IF LPAREN expr RPAREN stmt %prec IFX
            | IF LPAREN expr RPAREN stmt ELSE stmt"""
    p[0] = IfStmt(p[3], p[5], p[7] if len(p) == 8 else None, p.lexpos(1))

def p_stmt_while(p):
    """stmt : WHILE LPAREN expr RPAREN stmt"""
    p[0] = WhileStmt(p[3], p[5], p.lexpos(1))

def p_reference(p):
    """reference : ID
                 | THIS
                 | qualified"""
    tk = p.slice[1].type
    if tk == "ID":
        p[0] = IdRef(Identifier(p[1], p.lexpos(1)), p.lexpos(1))
    elif tk == "THIS":
        p[0] = ThisRef(p.lexpos(1))
    else:
        p[0] = p[1]

def p_qualified(p):
    """qualified : reference DOT ID"""
    p[0] = QualRef(p[1], Identifier(p[3], p.lexpos(3)), p.lexpos(1))

def p_arg_list(p):
    """arg_list : args
                | empty"""
    p[0] = p[1] if p[1] is not None else []

def p_args(p):
    """args : args COMMA expr
            | expr"""
    if len(p) == 4:
        p[0] = p[1] + [p[3]]
    else:
        p[0] = [p[1]]

def p_expr_reference(p):
    """expr : reference"""
    p[0] = RefExpr(p[1], p.lexpos(1))

def p_expr_index(p):
    """expr : reference LBRACKET expr RBRACKET"""
    p[0] = IxExpr(p[1], p[3], p.lexpos(1))

def p_expr_call(p):
    """expr : reference LPAREN arg_list RPAREN"""
    p[0] = CallExpr(p[1], p[3], p.lexpos(1))

def p_expr_unary(p):
    """expr : MINUS expr %prec UMINUS
            | NOT expr"""
    p[0] = UnaryExpr(p[1], p[2], p.lexpos(1))

def p_expr_binops(p):
    """expr : expr OROR expr
            | expr ANDAND expr
            | expr EQ expr
            | expr NE expr
            | expr LT expr
            | expr LE expr
            | expr GT expr
            | expr GE expr
            | expr PLUS expr
            | expr MINUS expr
            | expr TIMES expr
            | expr DIVIDE expr"""
    p[0] = BinaryExpr(p[2], p[1], p[3], p.lexpos(2))

def p_expr_group(p):
    """expr : LPAREN expr RPAREN"""
    p[0] = p[2]

def p_expr_literal(p):
    """expr : NUM
            | TRUE
            | FALSE
            | NULL"""
    tk = p.slice[1].type
    if tk == "NUM": p[0] = IntLiteral(p[1], p.lexpos(1))
    elif tk == "TRUE": p[0] = BooleanLiteral(True, p.lexpos(1))
    elif tk == "FALSE": p[0] = BooleanLiteral(False, p.lexpos(1))
    else: p[0] = NullLiteral(p.lexpos(1))

def p_expr_new_object(p):
    """expr : NEW ID LPAREN RPAREN"""
    p[0] = NewObjectExpr(ClassType(Identifier(p[2], p.lexpos(2)), p.lexpos(2)), p.lexpos(1))

def p_expr_new_array(p):
    """expr : NEW INT LBRACKET expr RBRACKET
            | NEW ID LBRACKET expr RBRACKET"""
    if p.slice[2].type == "INT":
        elt = BaseType(TypeKind.INT, p.lexpos(2))
    else:
        elt = ClassType(Identifier(p[2], p.lexpos(2)), p.lexpos(2))
    p[0] = NewArrayExpr(elt, p[4], p.lexpos(1))

def p_error(p):
    if p is None:
        raise ParseError("unexpected end of file", None,
                         "check for unclosed braces, parentheses, or missing semicolons")
    hint = None
    if p.type == "RBRACE":
        msg = "unexpected '}'"
        hint = "check for missing semicolons or malformed statements before this brace"
    elif p.type == "ELSE":
        msg = "unexpected 'else'"
        hint = "an 'else' must directly follow the statement of an 'if'"
    elif p.type in reserved.values():
        msg = f"unexpected keyword '{p.value}'"
    else:
        msg = f"unexpected token '{p.value}'"
    raise ParseError(msg, p.lexpos, hint)

# ============================================================
# Predefined environment
# ============================================================

@dataclass
class Predefined:
    string: ClassDecl
    print_stream: ClassDecl
    system: ClassDecl
    out: FieldDecl
    println: MethodDecl
    length: FieldDecl

    @property
    def classes(self) -> List[ClassDecl]:
        return [self.string, self.print_stream, self.system]

def make_predefined() -> Predefined:
    # class String { }  -- values of type String never match anything
    string = ClassDecl("String")
    string.type = BaseType(TypeKind.UNSUPPORTED)

    # class _PrintStream { public void println(int n) { } }
    println = MethodDecl("println", BaseType(TypeKind.VOID),
                         params=[ParameterDecl("n", BaseType(TypeKind.INT))])
    print_stream = ClassDecl("_PrintStream", [], [println])

    # class System { public static _PrintStream out; }
    out = FieldDecl("out", class_type_of(print_stream), is_static=True)
    system = ClassDecl("System", [out], [])

    length = FieldDecl("length", BaseType(TypeKind.INT))
    return Predefined(string, print_stream, system, out, println, length)

# ============================================================
# Types
# ============================================================

def is_unsupported_class(t: TypeDenoter) -> bool:
    cd = t.class_name.decl
    return cd is None or cd.type.type_kind is TypeKind.UNSUPPORTED

def type_eq(t1: TypeDenoter, t2: TypeDenoter) -> bool:
    k1, k2 = t1.type_kind, t2.type_kind
    if k1 is TypeKind.ERROR or k2 is TypeKind.ERROR:
        return True
    if k1 is TypeKind.UNSUPPORTED or k2 is TypeKind.UNSUPPORTED:
        return False

    if k1 is TypeKind.ARRAY or k2 is TypeKind.ARRAY:
        if k1 is TypeKind.NULL or k2 is TypeKind.NULL:
            return True
        if k1 is TypeKind.ARRAY and k2 is TypeKind.ARRAY:
            return type_eq(t1.elt, t2.elt)
        return False

    if k1 is TypeKind.CLASS or k2 is TypeKind.CLASS:
        if k1 is TypeKind.NULL or k2 is TypeKind.NULL:
            return True
        if k1 is not TypeKind.CLASS or k2 is not TypeKind.CLASS:
            return False
        if is_unsupported_class(t1) or is_unsupported_class(t2):
            return False
        return t1.class_name.decl is t2.class_name.decl

    return k1 is k2

# ============================================================
# Scope table
# ============================================================

PREDEFINED_LEVEL = 0
CLASS_LEVEL = 1
MEMBER_LEVEL = 2
PARAM_LEVEL = 3

class IdentificationTable:
    def __init__(self, es: ErrorSink) -> None:
        self.es = es
        self.scopes: List[Dict[str, Declaration]] = [{}]
        self.classes: Dict[str, ClassDecl] = {}
        self.members: Dict[Tuple[str, str], Declaration] = {}

    @property
    def level(self) -> int:
        return len(self.scopes) - 1

    def open_scope(self):
        self.scopes.append({})

    def close_scope(self):
        if self.level == PREDEFINED_LEVEL:
            self.es.fatal("internal error: cannot close the predefined scope")
        self.scopes.pop()

    def enter(self, decl: Declaration, pos: int = 0) -> bool:
        name = decl.name
        if name in self.scopes[-1]:
            self.es.error(f"duplicate declaration of '{name}'", pos)
            return False
        # parameters and locals may not be hidden by a nested local
        for lvl in range(PARAM_LEVEL, self.level):
            if name in self.scopes[lvl]:
                self.es.error(f"declaration of '{name}' hides a parameter or local variable", pos,
                              "rename the inner variable")
                return False
        self.scopes[-1][name] = decl
        return True

    def retrieve(self, name: str) -> Optional[Declaration]:
        for scope in reversed(self.scopes):
            decl = scope.get(name)
            if decl is not None:
                return decl
        return None

    def register_class(self, cd: ClassDecl) -> bool:
        if cd.name in self.classes:
            self.es.error(f"duplicate declaration of class '{cd.name}'", cd.pos)
            return False
        self.classes[cd.name] = cd
        return True

    def register_member(self, cd: ClassDecl, member: Declaration) -> bool:
        key = (cd.name, member.name)
        if key in self.members:
            self.es.note(f"previous declaration of '{member.name}' is here", self.members[key].pos)
            self.es.error(f"duplicate declaration of member '{member.name}' in class '{cd.name}'",
                          member.pos, "fields and methods of a class share one namespace")
            return False
        self.members[key] = member
        return True

    def retrieve_class(self, name: str) -> Optional[ClassDecl]:
        return self.classes.get(name)

    def retrieve_member(self, class_name: str, name: str) -> Optional[Declaration]:
        return self.members.get((class_name, name))

# ============================================================
# Identification
# ============================================================

def _bind(node, decl):
    # declaration slots are written once
    if node.decl is None:
        node.decl = decl
    return node.decl

class Resolver:
    """Binds every name in the program to its declaration.

    Classes and members are collected first, so members can be used before
    they are declared. Errors are recorded and the offending reference is
    left unbound.
    """

    def __init__(self, prog: Program, es: ErrorSink):
        self.prog = prog
        self.es = es
        if prog.env is None:
            prog.env = make_predefined()
        self.env: Predefined = prog.env
        self.table = IdentificationTable(es)
        self.user_classes: List[ClassDecl] = []
        self.current_class: Optional[ClassDecl] = None
        self.current_method: Optional[MethodDecl] = None
        self.initializing: Optional[VarDecl] = None

    def run(self):
        self.collect()
        self.resolve_program()

    # ---- pass 1: class and member registries
    def collect(self):
        t = self.table
        for cd in self.env.classes:
            t.enter(cd)
            t.register_class(cd)
            for m in cd.members:
                t.register_member(cd, m)

        t.open_scope()  # CLASS_LEVEL
        for cd in self.prog.classes:
            if not t.register_class(cd):
                continue
            t.enter(cd, cd.pos)
            self.user_classes.append(cd)
            for m in cd.members:
                t.register_member(cd, m)

    # ---- pass 2: bodies
    def resolve_program(self):
        t = self.table
        for cd in self.user_classes:
            self.current_class = cd
            t.open_scope()  # MEMBER_LEVEL
            for m in cd.members:
                if t.retrieve_member(cd.name, m.name) is m:
                    t.enter(m, m.pos)
            for fd in cd.fields:
                self.resolve_type(fd.type)
            for md in cd.methods:
                self.resolve_method(md)
            t.close_scope()
        self.current_class = None

    def resolve_method(self, md: MethodDecl):
        t = self.table
        self.current_method = md
        self.resolve_type(md.type)
        t.open_scope()  # PARAM_LEVEL
        for pd in md.params:
            self.resolve_type(pd.type)
            t.enter(pd, pd.pos)
        t.open_scope()
        for s in md.body:
            self.resolve_stmt(s)
        t.close_scope()
        t.close_scope()
        self.current_method = None

    def resolve_type(self, ty: TypeDenoter):
        if ty.kind == "BaseType":
            return
        if ty.kind == "ArrayType":
            self.resolve_type(ty.elt)
            return
        if ty.kind == "ClassType":
            cd = ty.class_name.decl or self.table.retrieve_class(ty.name)
            if cd is None:
                self.es.error(f"undeclared class '{ty.name}'", ty.pos)
                return
            _bind(ty.class_name, cd)
            return
        self.es.fatal(f"internal error: unknown type kind '{ty.kind}'", ty.pos)

    # ---- statements
    def resolve_stmt(self, s: Statement):
        k = s.kind
        if k == "BlockStmt":
            self.table.open_scope()
            for st in s.stmts:
                self.resolve_stmt(st)
            self.table.close_scope()
        elif k == "VarDeclStmt":
            self.resolve_type(s.var.type)
            self.table.enter(s.var, s.var.pos)
            self.initializing = s.var
            self.resolve_expr(s.init)
            self.initializing = None
        elif k == "AssignStmt":
            self.resolve_ref(s.ref)
            self.resolve_expr(s.value)
        elif k == "IxAssignStmt":
            self.resolve_ref(s.ref)
            self.resolve_expr(s.index)
            self.resolve_expr(s.value)
        elif k == "CallStmt":
            self.resolve_call(s.method_ref, s.args)
        elif k == "ReturnStmt":
            if s.expr is not None:
                self.resolve_expr(s.expr)
        elif k == "IfStmt":
            self.resolve_expr(s.cond)
            self.resolve_branch(s.then)
            if s.else_ is not None:
                self.resolve_branch(s.else_)
        elif k == "WhileStmt":
            self.resolve_expr(s.cond)
            self.resolve_branch(s.body)
        else:
            self.es.fatal(f"internal error: unknown statement kind '{k}'", s.pos)

    def resolve_branch(self, s: Statement):
        if s.kind == "VarDeclStmt":
            self.es.error("a variable declaration cannot be the only statement of a branch", s.pos,
                          "wrap the declaration in a block")
        self.resolve_stmt(s)

    # ---- expressions
    def resolve_expr(self, e: Expression):
        k = e.kind
        if k in ("IntLiteral", "BooleanLiteral", "NullLiteral"):
            return
        if k == "UnaryExpr":
            self.resolve_expr(e.expr)
        elif k == "BinaryExpr":
            self.resolve_expr(e.left)
            self.resolve_expr(e.right)
        elif k == "RefExpr":
            self.resolve_ref(e.ref)
        elif k == "IxExpr":
            self.resolve_ref(e.ref)
            self.resolve_expr(e.index)
        elif k == "CallExpr":
            self.resolve_call(e.function_ref, e.args)
        elif k == "NewObjectExpr":
            self.resolve_type(e.class_type)
        elif k == "NewArrayExpr":
            self.resolve_type(e.elt_type)
            self.resolve_expr(e.size)
        else:
            self.es.fatal(f"internal error: unknown expression kind '{k}'", e.pos)

    def resolve_call(self, ref: Reference, args: List[Expression]):
        decl = self.resolve_ref(ref)
        if decl is not None and not isinstance(decl, MethodDecl):
            self.es.error(f"'{decl.name}' is not a method", ref.pos)
        for a in args:
            self.resolve_expr(a)

    # ---- references
    def resolve_ref(self, ref: Reference) -> Optional[Declaration]:
        k = ref.kind
        if k == "ThisRef":
            if self.current_method.is_static:
                self.es.error("'this' cannot be used in a static method", ref.pos)
                return None
            return _bind(ref, self.current_class)
        if k == "IdRef":
            decl = self.resolve_id(ref.id)
            return _bind(ref, decl) if decl is not None else None
        if k == "QualRef":
            decl = self.resolve_qualified(ref)
            return _bind(ref, decl) if decl is not None else None
        self.es.fatal(f"internal error: unknown reference kind '{k}'", ref.pos)

    def resolve_id(self, ident: Identifier) -> Optional[Declaration]:
        name = ident.spelling
        decl = self.table.retrieve(name)
        if decl is None:
            self.es.error(f"undeclared identifier '{name}'", ident.pos)
            return None
        if decl is self.initializing:
            self.es.error(f"variable '{name}' cannot be used in its own initializer", ident.pos)
            return None
        # only members of the current class are found this way
        if isinstance(decl, (FieldDecl, MethodDecl)) and decl.is_static != self.current_method.is_static:
            if self.current_method.is_static:
                self.es.error(f"non-static member '{name}' cannot be referenced from a static method",
                              ident.pos, "qualify it with an instance")
            else:
                self.es.error(f"static member '{name}' must be qualified with its class here",
                              ident.pos, f"write {self.current_class.name}.{name}")
            return None
        return _bind(ident, decl)

    def resolve_qualified(self, qr: QualRef) -> Optional[Declaration]:
        base = self.resolve_ref(qr.ref)
        if base is None:
            return None
        name = qr.id.spelling
        if isinstance(base, MethodDecl):
            self.es.error(f"method '{base.name}' cannot be used as a qualifier", qr.ref.pos)
            return None

        if qr.ref.kind == "ThisRef":
            member = self._member(self.current_class, name, qr.id.pos)
        elif isinstance(base, ClassDecl):
            member = self._member(base, name, qr.id.pos)
            if member is not None and not member.is_static:
                self.es.error(f"non-static member '{name}' cannot be accessed through class '{base.name}'",
                              qr.id.pos, "qualify it with an instance")
                return None
        else:
            ty = base.type
            if ty.kind == "ArrayType":
                if name != "length":
                    self.es.error(f"arrays have no member '{name}'", qr.id.pos)
                    return None
                member = self.env.length
            elif ty.kind == "ClassType":
                cd = ty.class_name.decl
                if cd is None:
                    return None
                member = self._member(cd, name, qr.id.pos)
            else:
                self.es.error(f"'{base.name}' of type {ty} has no members", qr.ref.pos)
                return None

        if member is None:
            return None
        return _bind(qr.id, member)

    def _member(self, cd: ClassDecl, name: str, pos: int) -> Optional[Declaration]:
        member = self.table.retrieve_member(cd.name, name)
        if member is None:
            self.es.error(f"undeclared identifier '{name}' in class '{cd.name}'", pos)
            return None
        if member.is_private and cd is not self.current_class:
            self.es.error(f"'{name}' is private to class '{cd.name}'", pos)
            return None
        return member

# ============================================================
# Type checking
# ============================================================

ARITHMETIC_OPS = {"+", "-", "*", "/"}
RELATIONAL_OPS = {"<", "<=", ">", ">="}
EQUALITY_OPS = {"==", "!="}
LOGICAL_OPS = {"&&", "||"}

def _is(t: TypeDenoter, kind: TypeKind) -> bool:
    return t.type_kind is kind or t.type_kind is TypeKind.ERROR

class TypeChecker:
    def __init__(self, prog: Program, es: ErrorSink):
        self.prog = prog
        self.es = es
        self.env: Predefined = prog.env
        self.current_method: Optional[MethodDecl] = None

    def run(self):
        for cd in self.prog.classes:
            for md in cd.methods:
                self.current_method = md
                for s in md.body:
                    self.check_stmt(s)
        self.current_method = None

    def _set(self, node, ty: TypeDenoter) -> TypeDenoter:
        # type slots are written once
        if node.type is None:
            node.type = ty
        return node.type

    def _error(self, msg: str, pos: int, hint: Optional[str] = None) -> TypeDenoter:
        self.es.error(msg, pos, hint)
        return BaseType(TypeKind.ERROR, pos)

    # ---- statements
    def check_stmt(self, s: Statement) -> TypeDenoter:
        k = s.kind
        if k == "BlockStmt":
            for st in s.stmts:
                self.check_stmt(st)
        elif k == "VarDeclStmt":
            vt = s.var.type
            it = self.check_expr(s.init)
            if not type_eq(vt, it):
                self._error(f"cannot initialize '{s.var.name}' of type {vt} with a value of type {it}",
                            s.init.pos)
        elif k == "AssignStmt":
            lt = self.check_target(s.ref)
            vt = self.check_expr(s.value)
            if not type_eq(lt, vt):
                self._error(f"cannot assign a value of type {vt} to a target of type {lt}", s.value.pos)
        elif k == "IxAssignStmt":
            at = self.check_target(s.ref)
            it = self.check_expr(s.index)
            vt = self.check_expr(s.value)
            if not _is(it, TypeKind.INT):
                self._error(f"array index must be int, got {it}", s.index.pos)
            if at.kind == "ArrayType":
                if not type_eq(at.elt, vt):
                    self._error(f"cannot store a value of type {vt} into an array of {at.elt}", s.value.pos)
            elif not _is(at, TypeKind.ARRAY):
                self._error(f"cannot index into a value of type {at}", s.ref.pos)
        elif k == "CallStmt":
            self.check_call(s.method_ref, s.args, s.pos)
        elif k == "ReturnStmt":
            self.check_return(s)
        elif k == "IfStmt":
            self.check_condition(s.cond, "if")
            self.check_stmt(s.then)
            if s.else_ is not None:
                self.check_stmt(s.else_)
        elif k == "WhileStmt":
            self.check_condition(s.cond, "while")
            self.check_stmt(s.body)
        else:
            self.es.fatal(f"internal error: unknown statement kind '{k}'", s.pos)
        return self._set(s, BaseType(TypeKind.UNSUPPORTED, s.pos))

    def check_return(self, s: ReturnStmt):
        rt = self.current_method.type
        if s.expr is None:
            if rt.type_kind is not TypeKind.VOID:
                self._error(f"missing return value in method '{self.current_method.name}' returning {rt}", s.pos)
            return
        et = self.check_expr(s.expr)
        if rt.type_kind is TypeKind.VOID:
            self._error(f"void method '{self.current_method.name}' cannot return a value", s.expr.pos)
        elif not type_eq(rt, et):
            self._error(f"cannot return a value of type {et} from a method returning {rt}", s.expr.pos)

    def check_condition(self, cond: Expression, what: str):
        ct = self.check_expr(cond)
        if not _is(ct, TypeKind.BOOLEAN):
            self._error(f"{what} condition must be boolean, got {ct}", cond.pos)

    def check_target(self, ref: Reference) -> TypeDenoter:
        decl = self._decl(ref)
        if ref.kind == "ThisRef":
            return self._error("cannot assign to 'this'", ref.pos)
        if isinstance(decl, ClassDecl):
            return self._error(f"cannot assign to class '{decl.name}'", ref.pos)
        if isinstance(decl, MethodDecl):
            return self._error(f"cannot assign to method '{decl.name}'", ref.pos)
        if decl is self.env.length:
            return self._error("array length is read-only", ref.pos)
        if decl is self.env.out:
            return self._error("'System.out' is read-only", ref.pos)
        return decl.type

    def check_call(self, ref: Reference, args: List[Expression], pos: int) -> TypeDenoter:
        decl = self._decl(ref)
        arg_types = [self.check_expr(a) for a in args]
        if not isinstance(decl, MethodDecl):
            return self._error(f"'{decl.name}' is not a method", ref.pos)
        if len(args) != len(decl.params):
            return self._error(f"method '{decl.name}' expects {len(decl.params)} argument(s), got {len(args)}", pos)
        for a, at, pd in zip(args, arg_types, decl.params):
            if not type_eq(pd.type, at):
                self._error(f"argument '{pd.name}' of '{decl.name}' expects {pd.type}, got {at}", a.pos)
        return decl.type

    def _decl(self, ref: Reference) -> Declaration:
        if ref.decl is None:
            self.es.fatal("internal error: unresolved reference reached type checking", ref.pos)
        return ref.decl

    # ---- expressions
    def check_expr(self, e: Expression) -> TypeDenoter:
        return self._set(e, self._expr_type(e))

    def _expr_type(self, e: Expression) -> TypeDenoter:
        k = e.kind
        if k == "IntLiteral":
            return BaseType(TypeKind.INT, e.pos)
        if k == "BooleanLiteral":
            return BaseType(TypeKind.BOOLEAN, e.pos)
        if k == "NullLiteral":
            return BaseType(TypeKind.NULL, e.pos)

        if k == "UnaryExpr":
            t = self.check_expr(e.expr)
            if e.op == "-":
                if not _is(t, TypeKind.INT):
                    return self._error(f"unary '-' requires an int operand, got {t}", e.pos)
                return BaseType(TypeKind.INT, e.pos)
            if e.op == "!":
                if not _is(t, TypeKind.BOOLEAN):
                    return self._error(f"'!' requires a boolean operand, got {t}", e.pos)
                return BaseType(TypeKind.BOOLEAN, e.pos)
            self.es.fatal(f"internal error: unknown unary operator '{e.op}'", e.pos)

        if k == "BinaryExpr":
            lt = self.check_expr(e.left)
            rt = self.check_expr(e.right)
            op = e.op
            if op in ARITHMETIC_OPS or op in RELATIONAL_OPS:
                if not (_is(lt, TypeKind.INT) and _is(rt, TypeKind.INT)):
                    return self._error(f"operator '{op}' requires int operands, got {lt} and {rt}", e.pos)
                kind = TypeKind.INT if op in ARITHMETIC_OPS else TypeKind.BOOLEAN
                return BaseType(kind, e.pos)
            if op in EQUALITY_OPS:
                if not type_eq(lt, rt):
                    return self._error(f"cannot compare {lt} with {rt}", e.pos)
                return BaseType(TypeKind.BOOLEAN, e.pos)
            if op in LOGICAL_OPS:
                if not (_is(lt, TypeKind.BOOLEAN) and _is(rt, TypeKind.BOOLEAN)):
                    return self._error(f"operator '{op}' requires boolean operands, got {lt} and {rt}", e.pos)
                return BaseType(TypeKind.BOOLEAN, e.pos)
            self.es.fatal(f"internal error: unknown binary operator '{op}'", e.pos)

        if k == "RefExpr":
            return self.check_value(e.ref)

        if k == "IxExpr":
            at = self.check_value(e.ref)
            it = self.check_expr(e.index)
            if not _is(it, TypeKind.INT):
                self._error(f"array index must be int, got {it}", e.index.pos)
            if at.kind == "ArrayType":
                return at.elt
            if at.type_kind is TypeKind.ERROR:
                return at
            return self._error(f"cannot index into a value of type {at}", e.ref.pos)

        if k == "CallExpr":
            return self.check_call(e.function_ref, e.args, e.pos)

        if k == "NewObjectExpr":
            return e.class_type

        if k == "NewArrayExpr":
            st = self.check_expr(e.size)
            if not _is(st, TypeKind.INT):
                self._error(f"array size must be int, got {st}", e.size.pos)
            return ArrayType(e.elt_type, e.pos)

        self.es.fatal(f"internal error: unknown expression kind '{k}'", e.pos)

    def check_value(self, ref: Reference) -> TypeDenoter:
        decl = self._decl(ref)
        if ref.kind == "ThisRef":
            return decl.type
        if isinstance(decl, ClassDecl):
            return self._error(f"class '{decl.name}' cannot be used as a value", ref.pos)
        if isinstance(decl, MethodDecl):
            return self._error(f"method '{decl.name}' cannot be used as a value", ref.pos,
                               "did you mean to call it?")
        if decl is self.env.out:
            return self._error("'System.out' can only be used to call println", ref.pos)
        return decl.type

# ============================================================
# Target machine (mJAM)
# ============================================================

class Op(IntEnum):
    LOAD = 0
    LOADA = 1
    LOADI = 2
    LOADL = 3
    STORE = 4
    STOREI = 5
    CALL = 6
    CALLI = 7
    RETURN = 8
    NOP = 9
    PUSH = 10
    POP = 11
    JUMP = 12
    JUMPI = 13
    JUMPIF = 14
    HALT = 15

class Reg(IntEnum):
    ZR = 0
    CB = 1
    CT = 2
    PB = 3
    PT = 4
    SB = 5
    ST = 6
    HB = 7
    HT = 8
    LB = 9
    OB = 10
    CP = 11

class Prim(IntEnum):
    id = 0
    not_ = 1
    and_ = 2
    or_ = 3
    succ = 4
    pred = 5
    neg = 6
    add = 7
    sub = 8
    mult = 9
    div = 10
    mod = 11
    lt = 12
    le = 13
    ge = 14
    gt = 15
    eq = 16
    ne = 17
    eol = 18
    eof = 19
    get = 20
    put = 21
    geteol = 22
    puteol = 23
    getint = 24
    putint = 25
    putintnl = 26
    alloc = 27
    dispose = 28
    newobj = 29
    newarr = 30
    arrayref = 31
    arrayupd = 32
    fieldref = 33
    fieldupd = 34
    arraylen = 35

    @property
    def spelling(self) -> str:
        return self.name.rstrip("_")

OBJECT_HEADER_SIZE = 2   # class id, size
LINK_DATA_SIZE = 3       # dynamic link, return address, saved OB
TRUE_REP = 1
FALSE_REP = 0
NULL_REP = 0

BINARY_PRIMS = {
    "||": Prim.or_, "&&": Prim.and_,
    "==": Prim.eq, "!=": Prim.ne,
    "<": Prim.lt, "<=": Prim.le, ">": Prim.gt, ">=": Prim.ge,
    "+": Prim.add, "-": Prim.sub, "*": Prim.mult, "/": Prim.div,
}
UNARY_PRIMS = {"-": Prim.neg, "!": Prim.not_}

@dataclass
class Instruction:
    op: Op
    n: int = 0
    r: Reg = Reg.ZR
    d: int = 0

    def __str__(self):
        if self.op in (Op.CALL, Op.CALLI) and self.r is Reg.PB:
            return f"{self.op.name:<7} {Prim(self.d).spelling}"
        return f"{self.op.name:<7} {self.n} {self.r.name} {self.d}"

class CodeBuffer:
    """Linear instruction stream with backpatching of forward targets."""

    def __init__(self) -> None:
        self.code: List[Instruction] = []

    @property
    def next_addr(self) -> int:
        return len(self.code)

    def emit(self, op: Op, n: int = 0, r: Reg = Reg.ZR, d: int = 0) -> int:
        self.code.append(Instruction(op, n, r, d))
        return len(self.code) - 1

    def emit_prim(self, prim: Prim) -> int:
        return self.emit(Op.CALL, 0, Reg.PB, prim)

    def patch(self, addr: int, d: int):
        self.code[addr].d = d

@dataclass(frozen=True)
class MethodPatch:
    addr: int
    method: MethodDecl

@dataclass
class ObjectCode:
    code: List[Instruction]
    static_size: int
    patches: List[MethodPatch]
    entry: int

    def format_listing(self) -> str:
        width = len(str(max(len(self.code) - 1, 0)))
        lines = [f"; static segment: {self.static_size} word(s), entry at {self.entry}"]
        for addr, ins in enumerate(self.code):
            lines.append(f"{addr:>{width}}  {ins}")
        return "\n".join(lines) + "\n"

    def write_listing(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.format_listing())

# ============================================================
# Code generation
# ============================================================

class CodeGenerator:
    def __init__(self, prog: Program, es: ErrorSink):
        self.prog = prog
        self.es = es
        self.env: Predefined = prog.env
        self.buf = CodeBuffer()
        self.patches: List[MethodPatch] = []
        self.static_size = 0
        self.current_method: Optional[MethodDecl] = None
        self.local_offset = LINK_DATA_SIZE
        self.block_locals: List[int] = []

    def generate(self) -> ObjectCode:
        buf = self.buf
        static_top = buf.emit(Op.PUSH, d=0)         # static segment, size patched below
        buf.emit(Op.LOADL, d=0)                     # empty String[] for main
        buf.emit_prim(Prim.newarr)
        main_call = buf.emit(Op.CALL, r=Reg.CB, d=0)
        buf.emit(Op.HALT)

        self.layout()
        main = self.find_main()
        self.patches.append(MethodPatch(main_call, main))

        methods = [md for cd in self.prog.classes for md in cd.methods]
        for md in methods:
            self.normalize(md)
        for md in methods:
            self.emit_method(md)

        buf.patch(static_top, self.static_size)
        for mp in self.patches:
            buf.patch(mp.addr, self._location(mp.method).offset)
        return ObjectCode(buf.code, self.static_size, list(self.patches), main.red.offset)

    # ---- layout
    def _place(self, decl: Declaration, where: Location, offset: int):
        if decl.red is not None:
            self.es.fatal(f"internal error: '{decl.name}' already has a runtime location", decl.pos)
        decl.red = RuntimeEntity(where, offset)

    def _location(self, decl: Declaration) -> RuntimeEntity:
        if decl.red is None:
            self.es.fatal(f"internal error: '{decl.name}' has no runtime location", decl.pos)
        return decl.red

    def layout(self):
        for class_id, cd in enumerate(self.prog.classes):
            cd.class_id = class_id
            count = 0
            for fd in cd.fields:
                if fd.is_static:
                    self._place(fd, Location.STATIC, self.static_size)
                    self.static_size += 1
                else:
                    self._place(fd, Location.INSTANCE, OBJECT_HEADER_SIZE + count)
                    count += 1
            cd.size = count

    def find_main(self) -> MethodDecl:
        mains = [md for cd in self.prog.classes for md in cd.methods if md.name == "main"]
        if not mains:
            self.es.fatal("no main method found", 0,
                          "declare 'public static void main(String[] args)'")
        if len(mains) > 1:
            self.es.fatal("more than one main method", mains[1].pos)
        md = mains[0]
        if not md.is_static:
            self.es.fatal("main method must be static", md.pos)
        if md.is_private:
            self.es.fatal("main method must not be private", md.pos)
        if md.type.type_kind is not TypeKind.VOID:
            self.es.fatal("main method must return void", md.pos)
        if len(md.params) != 1:
            self.es.fatal("main method must take exactly one parameter", md.pos)
        pt = md.params[0].type
        if not (pt.kind == "ArrayType" and pt.elt.kind == "ClassType" and pt.elt.name == "String"):
            self.es.fatal(f"main method parameter must be String[], got {pt}", md.params[0].pos)
        return md

    def normalize(self, md: MethodDecl):
        if not md.body:
            md.body.append(ReturnStmt(None, md.pos))
            return
        last = md.body[-1]
        if last.kind == "ReturnStmt":
            return
        if md.type.type_kind is not TypeKind.VOID:
            self.es.fatal(f"method '{md.name}' must end with a return statement", last.pos)
        md.body.append(ReturnStmt(None, last.pos))

    # ---- methods and statements
    def emit_method(self, md: MethodDecl):
        self.current_method = md
        arity = len(md.params)
        for i, pd in enumerate(md.params):
            self._place(pd, Location.FRAME, i - arity)
        self._place(md, Location.CODE, self.buf.next_addr)
        self.local_offset = LINK_DATA_SIZE
        self.block_locals = [0]
        for s in md.body:
            self.emit_stmt(s)
        self.current_method = None

    def emit_stmt(self, s: Statement):
        buf = self.buf
        k = s.kind
        if k == "BlockStmt":
            self.block_locals.append(0)
            for st in s.stmts:
                self.emit_stmt(st)
            count = self.block_locals.pop()
            if count:
                buf.emit(Op.POP, d=count)
                self.local_offset -= count
        elif k == "VarDeclStmt":
            self._place(s.var, Location.FRAME, self.local_offset)
            self.local_offset += 1
            self.block_locals[-1] += 1
            self.emit_expr(s.init)  # value stays in the new slot
        elif k == "AssignStmt":
            self.emit_store(s.ref, s.value)
        elif k == "IxAssignStmt":
            self.emit_ref(s.ref)
            self.emit_expr(s.index)
            self.emit_expr(s.value)
            buf.emit_prim(Prim.arrayupd)
        elif k == "CallStmt":
            md = self.emit_call(s.method_ref, s.args, s.pos)
            if md.type.type_kind is not TypeKind.VOID:
                buf.emit(Op.POP, d=1)
        elif k == "ReturnStmt":
            arity = len(self.current_method.params)
            if s.expr is not None:
                self.emit_expr(s.expr)
                buf.emit(Op.RETURN, 1, Reg.ZR, arity)
            else:
                buf.emit(Op.RETURN, 0, Reg.ZR, arity)
        elif k == "IfStmt":
            self.emit_expr(s.cond)
            skip = buf.emit(Op.JUMPIF, FALSE_REP, Reg.CB, 0)
            self.emit_stmt(s.then)
            end = buf.emit(Op.JUMP, 0, Reg.CB, 0)
            buf.patch(skip, buf.next_addr)
            if s.else_ is not None:
                self.emit_stmt(s.else_)
            buf.patch(end, buf.next_addr)
        elif k == "WhileStmt":
            to_test = buf.emit(Op.JUMP, 0, Reg.CB, 0)
            body = buf.next_addr
            self.emit_stmt(s.body)
            buf.patch(to_test, buf.next_addr)
            self.emit_expr(s.cond)
            buf.emit(Op.JUMPIF, TRUE_REP, Reg.CB, body)
        else:
            self.es.fatal(f"internal error: unknown statement kind '{k}'", s.pos)

    # ---- expressions
    def emit_expr(self, e: Expression):
        buf = self.buf
        k = e.kind
        if k == "IntLiteral":
            buf.emit(Op.LOADL, d=e.value)
        elif k == "BooleanLiteral":
            buf.emit(Op.LOADL, d=TRUE_REP if e.value else FALSE_REP)
        elif k == "NullLiteral":
            buf.emit(Op.LOADL, d=NULL_REP)
        elif k == "UnaryExpr":
            prim = UNARY_PRIMS.get(e.op)
            if prim is None:
                self.es.fatal(f"unknown unary operator '{e.op}'", e.pos)
            self.emit_expr(e.expr)
            buf.emit_prim(prim)
        elif k == "BinaryExpr":
            prim = BINARY_PRIMS.get(e.op)
            if prim is None:
                self.es.fatal(f"unknown binary operator '{e.op}'", e.pos)
            self.emit_expr(e.left)
            if e.op in LOGICAL_OPS:
                # left value decides the result when it is false (&&) or true (||)
                buf.emit(Op.LOAD, 0, Reg.ST, -1)
                when = FALSE_REP if e.op == "&&" else TRUE_REP
                skip = buf.emit(Op.JUMPIF, when, Reg.CB, 0)
                self.emit_expr(e.right)
                buf.emit_prim(prim)
                buf.patch(skip, buf.next_addr)
            else:
                self.emit_expr(e.right)
                buf.emit_prim(prim)
        elif k == "RefExpr":
            self.emit_ref(e.ref)
        elif k == "IxExpr":
            self.emit_ref(e.ref)
            self.emit_expr(e.index)
            buf.emit_prim(Prim.arrayref)
        elif k == "CallExpr":
            self.emit_call(e.function_ref, e.args, e.pos)
        elif k == "NewObjectExpr":
            cd = e.class_type.class_name.decl
            if cd is None or cd in self.env.classes:
                self.es.fatal(f"cannot instantiate class '{e.class_type.name}'", e.pos)
            buf.emit(Op.LOADL, d=cd.class_id)
            buf.emit(Op.LOADL, d=cd.size)
            buf.emit_prim(Prim.newobj)
        elif k == "NewArrayExpr":
            self.emit_expr(e.size)
            buf.emit_prim(Prim.newarr)
        else:
            self.es.fatal(f"internal error: unknown expression kind '{k}'", e.pos)

    def emit_ref(self, ref: Reference):
        """Push the value a reference denotes."""
        buf = self.buf
        if ref.kind == "ThisRef":
            buf.emit(Op.LOADA, 0, Reg.OB, 0)
            return
        decl = ref.decl
        if decl is self.env.length:
            self.emit_ref(ref.ref)
            buf.emit_prim(Prim.arraylen)
            return
        if decl is self.env.out or isinstance(decl, (ClassDecl, MethodDecl)) or decl is None:
            self.es.fatal("reference does not denote a value", ref.pos)
        red = self._location(decl)
        if red.where is Location.STATIC:
            buf.emit(Op.LOAD, 0, Reg.SB, red.offset)
        elif red.where is Location.FRAME:
            buf.emit(Op.LOAD, 0, Reg.LB, red.offset)
        elif ref.kind == "QualRef":
            self.emit_ref(ref.ref)
            buf.emit(Op.LOADL, d=red.offset)
            buf.emit_prim(Prim.fieldref)
        else:
            buf.emit(Op.LOAD, 0, Reg.OB, red.offset)

    def emit_store(self, ref: Reference, value: Expression):
        buf = self.buf
        decl = ref.decl
        if ref.kind == "ThisRef" or not isinstance(decl, (FieldDecl, ParameterDecl, VarDecl)) \
                or decl is self.env.length or decl is self.env.out:
            self.es.fatal("assignment target is not a variable", ref.pos)
        red = self._location(decl)
        if red.where is Location.INSTANCE and ref.kind == "QualRef":
            self.emit_ref(ref.ref)
            buf.emit(Op.LOADL, d=red.offset)
            self.emit_expr(value)
            buf.emit_prim(Prim.fieldupd)
            return
        self.emit_expr(value)
        reg = {Location.STATIC: Reg.SB, Location.FRAME: Reg.LB, Location.INSTANCE: Reg.OB}[red.where]
        buf.emit(Op.STORE, 0, reg, red.offset)

    def emit_call(self, ref: Reference, args: List[Expression], pos: int) -> MethodDecl:
        buf = self.buf
        md = ref.decl
        if not isinstance(md, MethodDecl):
            self.es.fatal("call target is not a method", pos)
        if md is self.env.println:
            self.emit_expr(args[0])
            buf.emit_prim(Prim.putintnl)
            return md
        for a in args:
            self.emit_expr(a)
        if md.is_static:
            addr = buf.emit(Op.CALL, 0, Reg.CB, 0)
        else:
            if ref.kind == "QualRef":
                self.emit_ref(ref.ref)
            else:
                buf.emit(Op.LOADA, 0, Reg.OB, 0)
            addr = buf.emit(Op.CALLI, 0, Reg.CB, 0)
        self.patches.append(MethodPatch(addr, md))
        return md

# ============================================================
# Driver
# ============================================================

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_BAD_INPUT = 3
EXIT_SEMANTIC = 4
EXIT_PARSE = 5

@dataclass
class CompileResult:
    source: Source
    es: ErrorSink
    ast: Optional[Program] = None
    object_code: Optional[ObjectCode] = None
    status: int = EXIT_OK

    @property
    def ok(self) -> bool:
        return self.status == EXIT_OK

def compile_source(text: str, path: str = "<input>", fail_fast: bool = False) -> CompileResult:
    src = Source.from_text(text, path)
    es = ErrorSink(src, fail_fast)
    result = CompileResult(src, es)

    try:
        result.ast = parse_source(src)
    except ParseError as e:
        pos = e.lexpos if e.lexpos is not None else len(src.text)
        es.errors.append(Diag("error", e.msg, src, pos, e.hint))
        result.status = EXIT_PARSE
        return result

    try:
        Resolver(result.ast, es).run()
        if not es.ok():
            result.status = EXIT_SEMANTIC
            return result
        TypeChecker(result.ast, es).run()
        if not es.ok():
            result.status = EXIT_SEMANTIC
            return result
        result.object_code = CodeGenerator(result.ast, es).generate()
    except CompileAbort:
        result.status = EXIT_SEMANTIC
    return result

def listing_path(path: str) -> str:
    base = os.path.splitext(path)[0]
    return base + ".mJAM.txt"

def compile_file(path: str, output: Optional[str] = None, fail_fast: bool = False,
                 use_color: bool = True) -> int:
    try:
        src = Source.from_path(path)
    except (OSError, UnicodeDecodeError) as e:
        print(f"error: cannot read '{path}': {e}")
        return EXIT_BAD_INPUT

    result = compile_source(src.text, src.path, fail_fast)
    if not result.ok:
        result.es.dump(use_color)
        if result.status == EXIT_PARSE:
            print(f"{path}: parse failure")
        else:
            print(f"{path}: {len(result.es.errors)} error(s)")
        return result.status

    out = output or listing_path(path)
    result.object_code.write_listing(out)
    print(f"Wrote {out}")
    return EXIT_OK

# ============================================================
# CLI
# ============================================================

USAGE = "usage: minijava <file.java> [-o OUTPUT] [--fail-fast] [--no-color]"

def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    out = None
    fail_fast = False
    use_color = sys.stdout.isatty()

    files: List[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-o", "--output"):
            if i + 1 >= len(args):
                print("error: -o/--output requires a path")
                return EXIT_USAGE
            out = args[i + 1]
            i += 2
            continue
        if arg == "--fail-fast":
            fail_fast = True
        elif arg == "--no-color":
            use_color = False
        elif arg in ("-h", "--help"):
            print(USAGE)
            return EXIT_OK
        elif arg.startswith("-"):
            print(f"error: unknown option '{arg}'")
            print(USAGE)
            return EXIT_USAGE
        else:
            files.append(arg)
        i += 1

    if len(files) != 1:
        print("error: expected exactly one input file")
        print(USAGE)
        return EXIT_USAGE

    return compile_file(files[0], output=out, fail_fast=fail_fast, use_color=use_color)


if __name__ == "__main__":
    sys.exit(main())
