from . import charts as charts
from . import errors as errors
from . import noises as noises
from . import utils as utils
from ._block_matrix import JacobianMap as JacobianMap
from ._block_matrix import VerticalBlockMatrix as VerticalBlockMatrix
from ._expression_factor import ExpressionFactor as ExpressionFactor
from ._expressions import ConstantExpression as ConstantExpression
from ._expressions import Expression as Expression
from ._expressions import FunctionExpression as FunctionExpression
from ._expressions import JacMode as JacMode
from ._expressions import LeafExpression as LeafExpression
from ._expressions import apply as apply
from ._expressions import between as between
from ._expressions import constant as constant
from ._expressions import inverse as inverse
from ._expressions import leaf as leaf
from ._jacobian_factor import JacobianFactor as JacobianFactor
from ._keys import Key as Key
from ._keys import format_key as format_key
from ._keys import symbol as symbol
from ._values import Values as Values
from ._vector_values import VectorValues as VectorValues
